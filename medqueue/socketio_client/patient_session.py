"""Patient queue session.

Follows one booked patient: joins the patient room, folds position pushes and
consultation lifecycle events into ``PatientQueueState`` and keeps the wait-time
countdown seeded from the freshest estimate. A dropped connection is reported as a
transient issue; the last known position stays on display.
"""
import asyncio
import logging
from typing import Any, List, Optional, Set

from ..core.api_client import QueueApiClient
from ..core.errors import ApiError
from ..core.event_bus import Subscription
from ..core.message_system import NotificationCategory, NotificationCenter
from ..core.models import BookingResult, PatientStatus
from ..core.reconciliation import PatientQueueState, parse_entries
from ..core.wait_timer import DEFAULT_TICK_INTERVAL, WaitTimer
from ..utils.event_utils import (
    ClientEvent, ConnectionEvent, ServerEvent, entity_name, patient_room
)
from .connection import ConnectionManager
from .rooms import RoomSubscriptions

logger = logging.getLogger(__name__)


class PatientQueueSession:
    def __init__(self,
                 patient_id: str,
                 doctor_id: str,
                 connection: ConnectionManager,
                 rooms: RoomSubscriptions,
                 api: QueueApiClient,
                 notifier: NotificationCenter,
                 patient_name: str = "",
                 doctor_name: str = "",
                 position: Optional[int] = None,
                 estimated_wait_time: int = 0,
                 timer_interval: float = DEFAULT_TICK_INTERVAL):
        self.patient_id = patient_id
        self.doctor_id = doctor_id
        self.patient_name = patient_name
        self.doctor_name = doctor_name
        self.connection = connection
        self.rooms = rooms
        self.api = api
        self.notifier = notifier

        self.state = PatientQueueState(patient_id, doctor_id, position, estimated_wait_time)
        self.timer = WaitTimer(on_times_up=self._on_times_up, interval=timer_interval)
        self.loading = False

        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_booking(cls, booking: BookingResult, connection: ConnectionManager,
                     rooms: RoomSubscriptions, api: QueueApiClient,
                     notifier: NotificationCenter, **kwargs) -> "PatientQueueSession":
        session = cls(
            booking.patient_id, booking.doctor_id, connection, rooms, api, notifier,
            patient_name=booking.patient_name,
            doctor_name=booking.doctor_name,
            position=booking.position_in_queue or None,
            estimated_wait_time=booking.estimated_wait_time,
            **kwargs
        )
        session.state.status = booking.status
        return session

    @property
    def room_key(self) -> str:
        return patient_room(self.patient_id)

    @property
    def position(self) -> Optional[int]:
        return self.state.position

    @property
    def status(self) -> PatientStatus:
        return self.state.status

    @property
    def wait_time(self) -> int:
        return self.timer.remaining

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self.connection.on(ServerEvent.QUEUE_UPDATE, self._on_queue_update),
            self.connection.on(ServerEvent.CONSULTATION_STARTED, self._on_consultation_started),
            self.connection.on(ServerEvent.PATIENT_STATUS_UPDATED, self._on_patient_status_updated),
            self.connection.on(ServerEvent.CONSULTATION_COMPLETED, self._on_consultation_completed),
            self.connection.on(ServerEvent.PATIENT_REMOVED, self._on_patient_removed),
            self.connection.on(ConnectionEvent.CONNECT, self._on_connect),
            self.connection.on(ConnectionEvent.DISCONNECT, self._on_disconnect),
        ]
        self.timer.start(self.state.estimated_wait_time, self.state.status.is_waiting)
        if self.connection.is_connected:
            await self._join()
        else:
            self._on_connection_issue()

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []
        self.timer.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _join(self) -> None:
        if await self.rooms.join_patient_room(self.patient_id, self.doctor_id):
            logger.info(f"Joined patient room for {self.patient_id} (doctor {self.doctor_id})")

    # --- Event Handlers ---

    def _on_connect(self, data: Any) -> None:
        if self.state.connection_issue:
            self.state.set_connection_issue(False)
            self.notifier.info("Reconnected", "Live queue updates have resumed.",
                               category=NotificationCategory.CONNECTION)
        self._spawn(self._join())

    def _on_disconnect(self, data: Any) -> None:
        self._on_connection_issue()

    def _on_connection_issue(self) -> None:
        if self.state.connection_issue or self.state.status.is_terminal:
            return
        self.state.set_connection_issue(True)
        self.notifier.warning(
            "Connection Issue",
            "We're having trouble reaching the server. Your place in the queue is retained.",
            category=NotificationCategory.CONNECTION,
        )

    def _on_queue_update(self, data: Any) -> None:
        update = self.state.apply_queue_update(data)
        if update is None:
            self._derive_position(data)
            return
        logger.info(f"Queue update: position {update.position}, "
                    f"estimated wait {update.estimated_wait_time} min")
        # Position-only pushes keep the running countdown
        if update.estimated_wait_time is not None:
            self.timer.start(update.estimated_wait_time, self.state.status.is_waiting)

    def _derive_position(self, data: Any) -> None:
        """Position from a pushed queue array when no position was pushed."""
        if self.state.status.is_terminal or not isinstance(data, dict):
            return
        queue = data.get("queue")
        if not isinstance(queue, list):
            return
        position = self.state.derive_position(parse_entries(queue))
        if position is not None:
            logger.debug(f"Derived queue position {position} from queue snapshot")

    def _on_consultation_started(self, data: Any) -> None:
        if not self.state.apply_consultation_started(data):
            return
        self._sync_timer()
        doctor_name = entity_name(data, "doctor", self.doctor_name)
        self.notifier.info("Consultation Starting", f"Dr. {doctor_name} is ready to see you now.",
                           category=NotificationCategory.CONSULTATION)

    def _on_patient_status_updated(self, data: Any) -> None:
        status = self.state.apply_patient_status_updated(data)
        if status is None:
            return
        self._sync_timer()
        doctor_name = entity_name(data, "doctor", self.doctor_name)
        if status == "next":
            title = "Please get ready"
            message = f"Walk to the door. You're next to see {doctor_name}."
        elif status == PatientStatus.LATE.value:
            title = "Schedule Update"
            message = (f"{doctor_name} has informed us of a slight delay: "
                       f"{self.state.status_reason}. We appreciate your patience.")
        else:
            title = "Queue Update"
            message = f"{doctor_name} has begun your consultation"
        self.notifier.info(title, message, category=NotificationCategory.QUEUE,
                           metadata={"status": status})

    def _on_consultation_completed(self, data: Any) -> None:
        if not self.state.apply_consultation_completed(data):
            return
        self._sync_timer()
        doctor_name = entity_name(data, "doctor", self.doctor_name)
        self.notifier.info("Consultation Completed",
                           f"Your consultation with Dr. {doctor_name} has been completed.",
                           category=NotificationCategory.CONSULTATION)

    def _on_patient_removed(self, data: Any) -> None:
        if not self.state.apply_patient_removed(data):
            return
        self._sync_timer()
        doctor_name = entity_name(data, "doctor", self.doctor_name)
        reason = self.state.status_reason
        message = f"You have been removed from Dr. {doctor_name}'s queue"
        if reason:
            message += f"\nReason: {reason}"
        self.notifier.warning("Removed from Queue", message, category=NotificationCategory.QUEUE)

    def _sync_timer(self) -> None:
        if not self.state.status.is_waiting:
            self.timer.stop()

    def _on_times_up(self) -> None:
        self.notifier.info(
            "Time's Up!",
            "Your estimated wait time has elapsed. You should be called soon!",
            category=NotificationCategory.TIMER,
        )

    # --- HTTP ---

    async def refresh_wait_time(self) -> int:
        """Reseed the countdown from the server's current estimate."""
        minutes = await self.api.get_estimated_wait_time(self.doctor_id)
        if minutes > 0:
            self.state.estimated_wait_time = minutes
            self.timer.start(minutes, self.state.status.is_waiting)
        return minutes

    async def leave_queue(self, reason: Optional[str] = None) -> bool:
        """Ask the server to take this patient out of the queue."""
        self.loading = True
        try:
            await self.api.remove_patient(self.patient_id, reason)
        except ApiError as e:
            logger.warning(f"Error removing from queue: {e}")
            self.notifier.error("Failed to remove you from queue",
                                f"{e} Please try again later",
                                category=NotificationCategory.QUEUE)
            return False
        finally:
            self.loading = False
        logger.info(f"Patient {self.patient_id} left the queue")
        self.state.status = PatientStatus.REMOVED
        self.state.status_reason = reason
        self.timer.stop()
        if self.connection.is_connected:
            await self.rooms.leave_room(self.room_key)
        return True

    async def update_status(self, status: str) -> None:
        """Report a patient-side status change (for example arriving late)."""
        if not status:
            raise ValueError("status is required")
        await self.connection.emit(ClientEvent.UPDATE_PATIENT_STATUS,
                                   {"patientId": self.patient_id, "status": status})
