"""Listener registry for events received on the shared connection.

python-socketio keeps a single handler per event name, so the connection manager
registers one dispatcher per event and fans out to the listeners registered here.
Every registration returns a ``Subscription`` that must be disposed on teardown; it is
also a context manager so a listener can be scoped to a block.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class Subscription:
    """Disposable handle for one registered listener."""

    def __init__(self, bus: "EventBus", event: str, callback: Callback, once: bool = False):
        self.bus = bus
        self.event = event
        self.callback = callback
        self.once = once
        self.active = True

    def dispose(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if self.active:
            self.active = False
            self.bus._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = "active" if self.active else "disposed"
        return f"<Subscription {self.event} {state}>"


class EventBus:
    def __init__(self):
        self._listeners: Dict[str, List[Subscription]] = {}

    def on(self, event: str, callback: Callback) -> Subscription:
        subscription = Subscription(self, event, callback)
        self._listeners.setdefault(event, []).append(subscription)
        return subscription

    def once(self, event: str, callback: Callback) -> Subscription:
        """Register a listener that is detached before its first invocation."""
        subscription = Subscription(self, event, callback, once=True)
        self._listeners.setdefault(event, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._listeners.get(subscription.event)
        if listeners and subscription in listeners:
            listeners.remove(subscription)
            if not listeners:
                del self._listeners[subscription.event]

    def dispatch(self, event: str, data: Any = None) -> int:
        """Invoke every listener for ``event`` in registration order.

        A failing listener is logged and does not prevent the others from running.
        Returns the number of listeners invoked.
        """
        invoked = 0
        for subscription in list(self._listeners.get(event, [])):
            if not subscription.active:
                continue
            if subscription.once:
                subscription.dispose()
            invoked += 1
            try:
                subscription.callback(data)
            except Exception as e:
                logger.error(f"Listener for '{event}' raised: {e}", exc_info=True)
        return invoked

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def clear(self) -> None:
        """Detach all listeners."""
        for listeners in list(self._listeners.values()):
            for subscription in list(listeners):
                subscription.active = False
        self._listeners.clear()
