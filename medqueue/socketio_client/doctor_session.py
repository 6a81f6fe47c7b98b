"""Doctor dashboard session.

Wires the shared connection, the doctor room and the reconciliation engine for one
doctor's queue, and exposes the doctor's commands:

- start/complete consultation: fire-and-forget emits followed by an optimistic
  status write, gated on the doctor room acknowledgement
- remove patient: a correlated command acknowledged by
  ``removePatientFromQueueResponse`` within a timeout
- doctor availability updates

The queue is fetched over HTTP after the room join and again after every reconnect.
"""
import asyncio
import logging
from typing import Any, List, Optional, Set

from ..core.api_client import QueueApiClient
from ..core.commands import CommandCorrelator
from ..core.errors import ApiError, ConnectivityError, QueueClientError, RoomNotJoinedError
from ..core.event_bus import Subscription
from ..core.message_system import NotificationCategory, NotificationCenter
from ..core.models import PatientStatus
from ..core.reconciliation import DoctorQueueState
from ..utils.event_utils import (
    START_CONSULTATION_ERROR, ClientEvent, ConnectionEvent, ServerEvent,
    create_patient_doctor_payload, doctor_room, entity_name
)
from .connection import ConnectionManager
from .rooms import RoomSubscriptions

logger = logging.getLogger(__name__)

DEFAULT_REMOVE_REASON = "Removed by doctor from dashboard"

SCOPED_EVENTS = (
    ServerEvent.QUEUE_CHANGED,
    ServerEvent.QUEUE_UPDATE,
    ServerEvent.CONSULTATION_STARTED,
    ServerEvent.CONSULTATION_COMPLETED,
    ServerEvent.PATIENT_REMOVED,
    ServerEvent.PATIENT_STATUS_UPDATED,
)


class DoctorDashboardSession:
    def __init__(self,
                 doctor_id: str,
                 connection: ConnectionManager,
                 rooms: RoomSubscriptions,
                 api: QueueApiClient,
                 notifier: NotificationCenter,
                 remove_timeout: float = 15.0,
                 room_join_timeout: float = 10.0):
        self.doctor_id = doctor_id
        self.connection = connection
        self.rooms = rooms
        self.api = api
        self.notifier = notifier
        self.room_join_timeout = room_join_timeout

        self.state = DoctorQueueState(doctor_id)
        self.commands = CommandCorrelator(connection, default_timeout=remove_timeout)
        self.loading = False

        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()
        self._rejoin_attempted = False

    @property
    def room_key(self) -> str:
        return doctor_room(self.doctor_id)

    @property
    def is_room_joined(self) -> bool:
        return self.rooms.is_joined(self.room_key)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Subscribe to queue events and join the doctor room if connected."""
        if self._subscriptions:
            return
        for event in SCOPED_EVENTS:
            self._subscriptions.append(
                self.connection.on(event, self._make_handler(event.value)))
        self._subscriptions.extend([
            self.connection.on(ServerEvent.DOCTOR_ROOM_JOINED, self._on_room_joined),
            self.connection.on(ServerEvent.ERROR, self._on_error),
            self.connection.on(ConnectionEvent.CONNECT, self._on_connect),
        ])
        if self.connection.is_connected:
            await self._join_and_fetch()

    async def stop(self) -> None:
        """Detach listeners, cancel pending work and leave the room."""
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []
        self.commands.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self.connection.is_connected and self.rooms.has_attempted(self.room_key):
            await self.rooms.leave_room(self.room_key)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _join_and_fetch(self) -> None:
        if await self.rooms.join_doctor_room(self.doctor_id):
            logger.info(f"Setting up room join for doctor {self.doctor_id}")
            await self.refresh()

    # --- Event Handlers ---

    def _make_handler(self, event_name: str):
        def handle(data: Any) -> None:
            if self.state.apply_event(event_name, data):
                self._notify(event_name, data)
        return handle

    def _notify(self, event_name: str, data: Any) -> None:
        patient = entity_name(data, "patient", "Patient")
        doctor = entity_name(data, "doctor", self.state.doctor.name or self.doctor_id)
        if event_name == ServerEvent.CONSULTATION_STARTED.value:
            self.notifier.info("Consultation Started",
                               f"{patient}'s consultation is now in progress with Dr. {doctor}",
                               category=NotificationCategory.CONSULTATION)
        elif event_name == ServerEvent.CONSULTATION_COMPLETED.value:
            self.notifier.info("Consultation Completed",
                               f"{patient}'s consultation with Dr. {doctor} has been completed",
                               category=NotificationCategory.CONSULTATION)
        elif event_name == ServerEvent.PATIENT_REMOVED.value:
            self.notifier.info("Patient Removed", f"{patient} has been removed from the queue",
                               category=NotificationCategory.QUEUE)

    def _on_connect(self, data: Any) -> None:
        # The room layer forgets joins on disconnect, so this re-joins exactly once.
        self._spawn(self._join_and_fetch())

    def _on_room_joined(self, data: Any) -> None:
        if self.is_room_joined:
            self._rejoin_attempted = False

    def _on_error(self, error: Any) -> None:
        if not isinstance(error, dict):
            logger.error(f"Socket error received: {error}")
            return
        message = str(error.get("message") or "")
        logger.error(f"Socket error received: {error.get('code')} {message}")
        if error.get("code") != START_CONSULTATION_ERROR:
            return
        self.notifier.error("Error", message, category=NotificationCategory.COMMAND)
        if "Unauthorized" in message and not self._rejoin_attempted:
            logger.info("Rejoining doctor room due to authorization error")
            self._rejoin_attempted = True
            self._spawn(self.rooms.join_doctor_room(self.doctor_id, force=True))

    # --- Data ---

    async def refresh(self) -> None:
        """Fetch the queue over HTTP; on failure fall back to an empty dashboard."""
        self.loading = True
        try:
            snapshot = await self.api.get_doctor_queue(self.doctor_id)
            self.state.apply_fetched(snapshot)
            logger.info(f"Fetched queue for doctor {self.doctor_id}: {len(snapshot.queue)} patients")
        except ApiError as e:
            logger.error(f"Failed to fetch doctor queue: {e}")
            self.state.reset()
        finally:
            self.loading = False

    # --- Commands ---

    async def _require_room(self) -> None:
        """Connectivity first, then the doctor room acknowledgement."""
        if not self.connection.is_connected:
            raise ConnectivityError("Socket connection is not active")
        if self.is_room_joined:
            return
        if not await self.rooms.wait_until_joined(self.room_key, self.room_join_timeout):
            if not self.connection.is_connected:
                raise ConnectivityError("Connection lost while waiting for the room join")
            raise RoomNotJoinedError("Connecting to server... please wait for the room join")

    async def start_consultation(self, patient_id: str) -> None:
        await self._run_command(
            "start consultation", ClientEvent.START_CONSULTATION, patient_id,
            PatientStatus.CONSULTING)

    async def complete_consultation(self, patient_id: str) -> None:
        await self._run_command(
            "complete consultation", ClientEvent.COMPLETE_CONSULTATION, patient_id,
            PatientStatus.COMPLETED)

    async def _run_command(self, label: str, event: ClientEvent, patient_id: str,
                           optimistic_status: PatientStatus) -> None:
        self.loading = True
        try:
            await self._require_room()
            logger.info(f"Emitting {label}: doctor={self.doctor_id} patient={patient_id}")
            await self.connection.emit(event, create_patient_doctor_payload(patient_id, self.doctor_id))
            self.state.mark_optimistic(patient_id, optimistic_status)
        except QueueClientError as e:
            logger.error(f"Error during {label}: {e}")
            self.notifier.error("Error", f"Failed to {label}. Please try again.",
                                category=NotificationCategory.COMMAND)
            raise
        finally:
            self.loading = False

    async def remove_patient(self, patient_id: str, reason: str = DEFAULT_REMOVE_REASON) -> dict:
        """Remove a patient and wait for the server's acknowledgement.

        The local entry is only removed after a successful response.
        """
        self.loading = True
        try:
            await self._require_room()
            response = await self.commands.request(
                ClientEvent.REMOVE_PATIENT_FROM_QUEUE,
                ServerEvent.REMOVE_PATIENT_RESPONSE,
                create_patient_doctor_payload(patient_id, self.doctor_id, reason=reason),
                fallback_message="Failed to remove patient",
            )
            self.state.remove_entry(patient_id)
            return response
        except QueueClientError as e:
            logger.error(f"Error removing patient {patient_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to remove patient",
                                category=NotificationCategory.COMMAND)
            raise
        finally:
            self.loading = False

    async def update_patient_status(self, patient_id: str, status: str) -> None:
        """Push a status for one of this doctor's patients (for example ``late``)."""
        if not patient_id or not status:
            raise ValueError("patient_id and status are required")
        await self.connection.emit(ClientEvent.UPDATE_PATIENT_STATUS,
                                   {"patientId": patient_id, "status": status})

    async def update_doctor_availability(self, is_available: bool) -> None:
        if not isinstance(is_available, bool):
            raise ValueError("is_available must be a boolean")
        await self.connection.emit(ClientEvent.UPDATE_DOCTOR_AVAILABILITY,
                                   {"doctorId": self.doctor_id, "isAvailable": is_available})
        self.state.doctor.is_available = is_available

    @property
    def stats(self):
        return self.state.stats

    @property
    def queue(self):
        return self.state.entries

    def entry(self, patient_id: str) -> Optional[Any]:
        return self.state.get_entry(patient_id)
