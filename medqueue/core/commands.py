"""Request/response correlation over one-way events.

Some operations are logically request/response but travel as two independent events:
the client emits a request, and the server later emits a response on a separate event
name. ``CommandCorrelator`` keeps one pending record per operation key (the response
event name) with a mandatory timeout, and settles each record exactly once. A record
is resolved, rejected, timed out, or failed by a disconnect; every path cancels the
timer and detaches the listeners.

Calls on the same key are serialized. Requests also carry a ``requestId`` nonce, and a
response echoing a different nonce is ignored.
"""
import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import CommandRejectedError, CommandTimeoutError, ConnectivityError
from .event_bus import Subscription
from ..utils.event_utils import ConnectionEvent, new_request_id

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 15.0


@dataclass
class PendingCommand:
    operation_key: str
    request_id: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)
    timeout_handle: Optional[asyncio.TimerHandle] = None
    subscription: Optional[Subscription] = None
    disconnect_subscription: Optional[Subscription] = None


class CommandCorrelator:
    def __init__(self, connection, default_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        """
        Args:
            connection: Object exposing ``is_connected``, ``emit`` and ``on`` like
                ``ConnectionManager``.
            default_timeout: Seconds to wait for a response.
        """
        self.connection = connection
        self.default_timeout = default_timeout
        self.pending: Dict[str, PendingCommand] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def request(self, request_event, response_event, payload: Dict[str, Any],
                      timeout: Optional[float] = None,
                      fallback_message: str = "Command failed") -> Dict[str, Any]:
        """Emit ``request_event`` and wait for a matching ``response_event``.

        Returns:
            The response payload when it reports ``success``.

        Raises:
            ConnectivityError: Not connected when the call is made.
            CommandRejectedError: The response reported failure.
            CommandTimeoutError: No response within ``timeout`` seconds.

        A connection lost while waiting also raises ``ConnectivityError``.
        """
        if not self.connection.is_connected:
            raise ConnectivityError("Socket connection is not active")

        key = response_event.value if hasattr(response_event, "value") else str(response_event)
        timeout = self.default_timeout if timeout is None else timeout

        async with self._lock_for(key):
            if not self.connection.is_connected:
                raise ConnectivityError("Socket connection is not active")

            loop = asyncio.get_running_loop()
            request_id = new_request_id()
            pending = PendingCommand(
                operation_key=key,
                request_id=request_id,
                future=loop.create_future(),
            )
            pending.subscription = self.connection.on(
                key, lambda response: self._on_response(pending, response, fallback_message))
            pending.disconnect_subscription = self.connection.on(
                ConnectionEvent.DISCONNECT, lambda data: self._on_disconnect(pending, data))
            pending.timeout_handle = loop.call_later(
                timeout, self._on_timeout, pending, timeout)
            self.pending[key] = pending

            try:
                await self.connection.emit(request_event, dict(payload, requestId=request_id))
                return await pending.future
            finally:
                self._settle(pending)

    def _settle(self, pending: PendingCommand) -> None:
        """Cancel the timer, detach the listeners and drop the record. Idempotent."""
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
            pending.timeout_handle = None
        if pending.subscription is not None:
            pending.subscription.dispose()
            pending.subscription = None
        if pending.disconnect_subscription is not None:
            pending.disconnect_subscription.dispose()
            pending.disconnect_subscription = None
        if self.pending.get(pending.operation_key) is pending:
            del self.pending[pending.operation_key]

    def _on_response(self, pending: PendingCommand, response: Any, fallback_message: str) -> None:
        if pending.future.done():
            return
        if not isinstance(response, dict):
            response = {"success": False, "message": None}
        echoed = response.get("requestId")
        if echoed is not None and echoed != pending.request_id:
            logger.debug(f"Ignoring '{pending.operation_key}' response for request {echoed}")
            return

        self._settle(pending)
        if response.get("success"):
            pending.future.set_result(response)
        else:
            message = response.get("message") or fallback_message
            pending.future.set_exception(CommandRejectedError(message, response))

    def _on_timeout(self, pending: PendingCommand, timeout: float) -> None:
        if pending.future.done():
            return
        self._settle(pending)
        logger.warning(f"No '{pending.operation_key}' response within {timeout:g}s")
        pending.future.set_exception(CommandTimeoutError(
            f"Operation timed out after {timeout:g} seconds"))

    def _on_disconnect(self, pending: PendingCommand, data: Any) -> None:
        if pending.future.done():
            return
        self._settle(pending)
        reason = data.get("reason") if isinstance(data, dict) else None
        logger.warning(f"Connection lost while waiting for '{pending.operation_key}' ({reason})")
        pending.future.set_exception(ConnectivityError(
            "Connection lost before the server responded"))

    def cancel_all(self) -> None:
        """Cancel every outstanding command (teardown)."""
        for pending in list(self.pending.values()):
            self._settle(pending)
            if not pending.future.done():
                pending.future.cancel()
