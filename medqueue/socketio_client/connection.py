"""MedQueue Socket.IO Connection Manager

This module owns the lifecycle of the persistent event-channel connection shared by
every room subscription, session and command in the client.

Key Features:
- Idempotent connect/disconnect around a single python-socketio AsyncClient
- Bounded automatic reconnection with randomized exponential backoff
- Observable connection state (connected flag, reconnection attempts)
- One dispatcher per server event, fanned out through an EventBus
- User-visible warnings for the first connection errors and a terminal
  notice once reconnection is exhausted
"""
import asyncio
import random
import logging
from typing import Any, Callable, Optional, Union

import socketio

from ..core.errors import ConnectivityError
from ..core.event_bus import EventBus, Subscription
from ..core.message_system import NotificationCategory, NotificationCenter
from ..utils.config_loader import ConfigManager
from ..utils.event_utils import ClientEvent, ConnectionEvent, ServerEvent

logger = logging.getLogger(__name__)

EventName = Union[str, ClientEvent, ServerEvent, ConnectionEvent]

# Connection errors beyond this count are logged but not surfaced to the user.
MAX_CONNECT_ERROR_NOTICES = 2


def _event_name(event: EventName) -> str:
    return event.value if hasattr(event, "value") else str(event)


class ConnectionManager:
    def __init__(self,
                 config: ConfigManager,
                 notifier: NotificationCenter,
                 client_factory: Optional[Callable[[], Any]] = None):
        self.config = config
        self.notifier = notifier
        self._client_factory = client_factory or self._create_client
        self.bus = EventBus()

        self.sio = None
        self.is_connected = False
        self.connection_attempts = 0
        self._connect_error_count = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

    # --- Configuration ---

    @property
    def url(self) -> str:
        return self.config.socket_url

    def _socket_setting(self, key: str, default: Any = None) -> Any:
        return self.config.get('socket', key, default=default)

    def _create_client(self):
        """Build the transport. Reconnection is driven by this manager, not the library."""
        return socketio.AsyncClient(
            reconnection=False,
            logger=False,
            engineio_logger=False,
            request_timeout=self._socket_setting('timeout', 10.0),
        )

    # --- Socket.IO Event Handlers ---

    def register_handlers(self, sio) -> None:
        """Register Socket.IO event handlers on a freshly created client."""
        sio.on('connect', self.on_connect)
        sio.on('disconnect', self.on_disconnect)
        for event in ServerEvent:
            sio.on(event.value, self._make_dispatcher(event.value))

    def _make_dispatcher(self, event_name: str):
        async def dispatch(*args):
            data = args[0] if args else None
            logger.debug(f"Received '{event_name}': {data}")
            self.bus.dispatch(event_name, data)
        return dispatch

    async def on_connect(self):
        """Handle connection to the server."""
        logger.info(f"Connected to queue server at {self.url}")
        self.is_connected = True
        self.connection_attempts = 0
        self._connect_error_count = 0
        self.bus.dispatch(ConnectionEvent.CONNECT.value, None)

    async def on_disconnect(self, reason=None):
        """Handle disconnection from the server."""
        if not self.is_connected:
            logger.debug(f"Disconnect event while already disconnected ({reason})")
            return
        logger.warning(f"Disconnected from queue server: {reason}")
        self._mark_disconnected(reason)
        if not self._closing and self._socket_setting('reconnection', True):
            self._schedule_reconnect()

    def _mark_disconnected(self, reason=None) -> None:
        self.is_connected = False
        self.bus.dispatch(ConnectionEvent.DISCONNECT.value, {"reason": reason})

    def _handle_connect_error(self, error: Exception) -> None:
        self.is_connected = False
        self._connect_error_count += 1
        logger.error(f"Connection error ({self._connect_error_count}): {error}")
        self.bus.dispatch(ConnectionEvent.CONNECT_ERROR.value,
                          {"error": str(error), "count": self._connect_error_count})
        if self._connect_error_count <= MAX_CONNECT_ERROR_NOTICES:
            self.notifier.warning(
                "Connection Error",
                "Having trouble connecting to the server. Retrying...",
                category=NotificationCategory.CONNECTION,
            )

    # --- Connection Lifecycle ---

    async def connect(self) -> bool:
        """Connect to the event channel.

        No-op when a connected handle exists or a reconnection loop is already running.
        A failed first attempt hands over to the reconnection loop.

        Returns:
            True if connected when this call returns.
        """
        if self.sio is not None and self.sio.connected:
            logger.debug("Socket already connected")
            return True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.debug("Reconnection already in progress")
            return False

        if self.sio is None:
            logger.info(f"Initializing socket connection to {self.url}")
            self.sio = self._client_factory()
            self.register_handlers(self.sio)
        self._closing = False

        if await self._attempt_connect():
            return True
        if self._socket_setting('reconnection', True):
            self._schedule_reconnect()
        return False

    async def _attempt_connect(self) -> bool:
        try:
            await self.sio.connect(
                self.url,
                transports=self.config.transports,
                wait_timeout=self._socket_setting('timeout', 10.0),
            )
            return True
        except (socketio.exceptions.ConnectionError, OSError) as e:
            self._handle_connect_error(e)
            return False

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    def _backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (0-based)."""
        base = float(self._socket_setting('reconnection_delay', 1.0))
        ceiling = float(self._socket_setting('reconnection_delay_max', 5.0))
        factor = float(self._socket_setting('randomization_factor', 0.5))
        delay = min(base * (2 ** attempt), ceiling)
        if factor:
            delay += random.uniform(-factor, factor) * delay
        return max(0.0, min(delay, ceiling))

    async def _reconnect_loop(self) -> None:
        max_attempts = self._socket_setting('reconnection_attempts', 3)
        attempt = 0
        while attempt < max_attempts:
            await asyncio.sleep(self._backoff_delay(attempt))
            if self._closing or self.sio is None:
                return
            attempt += 1
            self.connection_attempts = attempt
            logger.info(f"Socket reconnection attempt {attempt}/{max_attempts}")
            self.bus.dispatch(ConnectionEvent.RECONNECT_ATTEMPT.value, {"attempt": attempt})
            if await self._attempt_connect():
                logger.info(f"Socket reconnected after {attempt} attempt(s)")
                return

        logger.error(f"Socket reconnection failed after {attempt} attempt(s)")
        self.bus.dispatch(ConnectionEvent.RECONNECT_FAILED.value, {"attempts": attempt})
        self.notifier.error(
            "Connection Failed",
            "Unable to reconnect to the server. Please check your internet connection and try again.",
            category=NotificationCategory.CONNECTION,
        )

    async def wait_for_reconnect(self) -> None:
        """Wait until a running reconnection loop finishes."""
        task = self._reconnect_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def disconnect(self) -> None:
        """Disconnect and discard the transport handle. Safe to call repeatedly."""
        self._closing = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.sio is not None:
            logger.info("Disconnecting socket")
            if self.sio.connected:
                await self.sio.disconnect()
            self.sio = None
        if self.is_connected:
            self._mark_disconnected("client disconnect")

        self.is_connected = False
        self.connection_attempts = 0
        self._connect_error_count = 0

    # --- Messaging ---

    async def emit(self, event: EventName, data: Any = None) -> None:
        """Emit an event to the server.

        Raises:
            ConnectivityError: If there is no live connection.
        """
        name = _event_name(event)
        if self.sio is None or not self.is_connected:
            raise ConnectivityError(f"Cannot emit '{name}' - socket not connected")
        logger.debug(f"Emitting '{name}': {data}")
        await self.sio.emit(name, data)

    def on(self, event: EventName, callback: Callable[[Any], None]) -> Subscription:
        return self.bus.on(_event_name(event), callback)
