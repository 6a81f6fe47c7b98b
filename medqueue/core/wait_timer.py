"""Local wait-time countdown.

Between authoritative estimates the remaining wait is decremented once per interval
(a minute by default). A fresher server estimate replaces the countdown wholesale.
Reaching zero fires the "time's up" callback once and stops the timer.
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 60.0


class WaitTimer:
    def __init__(self,
                 on_times_up: Optional[Callable[[], None]] = None,
                 interval: float = DEFAULT_TICK_INTERVAL,
                 on_tick: Optional[Callable[[int], None]] = None):
        self.on_times_up = on_times_up
        self.on_tick = on_tick
        self.interval = interval
        self.remaining = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, minutes: int, is_waiting: bool = True) -> None:
        """(Re)seed the countdown. Ticking only starts for a positive value while waiting."""
        self.stop()
        self.remaining = max(0, int(minutes))
        if self.remaining > 0 and is_waiting:
            self._running = True
            self._task = asyncio.ensure_future(self._run())
            logger.debug(f"Wait timer started at {self.remaining} min")

    def stop(self) -> None:
        """Cancel the countdown if running. Keeps the displayed value."""
        self._running = False
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            self.tick()

    def tick(self) -> None:
        """Advance the countdown by one minute."""
        if not self._running or self.remaining <= 0:
            return
        self.remaining -= 1
        if self.on_tick is not None:
            self.on_tick(self.remaining)
        if self.remaining <= 0:
            self.remaining = 0
            self.stop()
            logger.info("Estimated wait time elapsed")
            if self.on_times_up is not None:
                self.on_times_up()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
