"""Room subscriptions on the shared queue connection.

The server scopes broadcasts to rooms: ``patient:<id>`` for a patient's own updates and
``doctor:<id>`` for a doctor's queue. Patient joins are fire-and-forget. Doctor joins
only count once the server acknowledges them with ``doctorRoomJoined``, because the
server rejects doctor commands from connections that have not joined yet.

Each room is joined at most once per connection lifetime. A disconnect clears both the
membership table and the join guard, so the next connection re-joins exactly once.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ..core.event_bus import Subscription
from ..utils.event_utils import (
    ClientEvent, ConnectionEvent, ServerEvent, doctor_room, patient_room
)
from .connection import ConnectionManager

logger = logging.getLogger(__name__)


class RoomSubscriptions:
    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self.memberships: Dict[str, bool] = {}
        self._attempted: Set[str] = set()
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        self._subscriptions: List[Subscription] = []

    # --- Lifecycle ---

    def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self.connection.on(ServerEvent.DOCTOR_ROOM_JOINED, self._on_doctor_room_joined),
            self.connection.on(ConnectionEvent.DISCONNECT, self._on_disconnect),
        ]

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []
        self.reset()

    def reset(self) -> None:
        """Forget every membership; pending waiters resolve as not joined."""
        self.memberships.clear()
        self._attempted.clear()
        for waiters in self._waiters.values():
            for future in waiters:
                if not future.done():
                    future.set_result(False)
        self._waiters.clear()

    def _on_disconnect(self, data: Any) -> None:
        if self.memberships or self._attempted:
            logger.info("Connection dropped, clearing room memberships")
        self.reset()

    # --- Joining ---

    def is_joined(self, room_key: str) -> bool:
        return self.memberships.get(room_key, False)

    def has_attempted(self, room_key: str) -> bool:
        return room_key in self._attempted

    async def join_patient_room(self, patient_id: str, doctor_id: Optional[str] = None,
                                force: bool = False) -> bool:
        """Emit a patient room join. Membership is assumed as soon as it is sent.

        Returns:
            True if a join request was emitted.
        """
        if not patient_id:
            logger.warning("join_patient_room called without patient_id")
            return False
        room_key = patient_room(patient_id)
        payload = {"patientId": patient_id}
        if doctor_id:
            payload["doctorId"] = doctor_id
        if not await self._emit_join(room_key, ClientEvent.JOIN_PATIENT_ROOM, payload, force):
            return False
        self.memberships[room_key] = True
        return True

    async def join_doctor_room(self, doctor_id: str, force: bool = False) -> bool:
        """Emit a doctor room join. Membership waits for ``doctorRoomJoined``.

        Returns:
            True if a join request was emitted.
        """
        if not doctor_id:
            logger.warning("join_doctor_room called without doctor_id")
            return False
        room_key = doctor_room(doctor_id)
        if not await self._emit_join(room_key, ClientEvent.JOIN_DOCTOR_ROOM,
                                     {"doctorId": doctor_id}, force):
            return False
        self.memberships.setdefault(room_key, False)
        return True

    async def _emit_join(self, room_key: str, event: ClientEvent, payload: Dict[str, Any],
                         force: bool) -> bool:
        if not self.connection.is_connected:
            logger.warning(f"Cannot join room {room_key} - socket not connected")
            return False
        if room_key in self._attempted and not force:
            logger.debug(f"Room {room_key} already joined on this connection")
            return False
        # Mark before awaiting so a concurrent call in the same turn cannot double-join.
        self._attempted.add(room_key)
        logger.info(f"Joining room {room_key}")
        try:
            await self.connection.emit(event, payload)
        except Exception:
            self._attempted.discard(room_key)
            raise
        return True

    def _on_doctor_room_joined(self, data: Any) -> None:
        doctor_id = data.get("doctorId") if isinstance(data, dict) else None
        if doctor_id is not None:
            confirmed = [doctor_room(str(doctor_id))]
        else:
            # Acknowledgement without an id confirms every pending doctor join.
            confirmed = [key for key, joined in self.memberships.items()
                         if key.startswith("doctor:") and not joined]
        for room_key in confirmed:
            if room_key not in self._attempted:
                logger.debug(f"Ignoring acknowledgement for room {room_key} never joined")
                continue
            logger.info(f"Doctor room join confirmed: {room_key}")
            self.memberships[room_key] = True
            for future in self._waiters.pop(room_key, []):
                if not future.done():
                    future.set_result(True)

    async def wait_until_joined(self, room_key: str, timeout: float) -> bool:
        """Wait for a room's join acknowledgement.

        Returns:
            True if the room is joined, False on timeout or disconnect.
        """
        if self.is_joined(room_key):
            return True
        if room_key not in self._attempted:
            return False
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(room_key, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            waiters = self._waiters.get(room_key)
            if waiters and future in waiters:
                waiters.remove(future)
                if not waiters:
                    del self._waiters[room_key]

    # --- Leaving ---

    async def leave_room(self, room_id: str) -> bool:
        """Emit a leave notification; no acknowledgement is expected."""
        if not room_id:
            logger.warning("leave_room called without room_id")
            return False
        self.memberships.pop(room_id, None)
        self._attempted.discard(room_id)
        if not self.connection.is_connected:
            logger.warning(f"Cannot leave room {room_id} - socket not connected")
            return False
        logger.info(f"Leaving room {room_id}")
        await self.connection.emit(ClientEvent.LEAVE_ROOM, {"roomId": room_id})
        return True
