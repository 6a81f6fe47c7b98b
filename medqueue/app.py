"""Application context for the MedQueue client.

One ``QueueClientApp`` is built per process. It owns the configuration, the
notification centre, the shared connection, the room layer and the HTTP client, and
hands them to the sessions it creates.
"""
import logging
from typing import Optional

from .core.api_client import QueueApiClient
from .core.message_system import NotificationCenter
from .core.models import BookingResult
from .socketio_client.connection import ConnectionManager
from .socketio_client.doctor_session import DoctorDashboardSession
from .socketio_client.patient_session import PatientQueueSession
from .socketio_client.rooms import RoomSubscriptions
from .utils.config_loader import ConfigManager

logger = logging.getLogger(__name__)


class QueueClientApp:
    def __init__(self,
                 config: Optional[ConfigManager] = None,
                 notifier: Optional[NotificationCenter] = None,
                 connection: Optional[ConnectionManager] = None,
                 api: Optional[QueueApiClient] = None):
        self.config = config or ConfigManager()
        self.notifier = notifier or NotificationCenter()
        self.connection = connection or ConnectionManager(self.config, self.notifier)
        self.rooms = RoomSubscriptions(self.connection)
        self.api = api or QueueApiClient(
            self.config.base_url, timeout=self.config.get('socket', 'timeout', 10.0))
        self._started = False

    async def start(self, connect: bool = True) -> None:
        if self._started:
            return
        self.rooms.start()
        self._started = True
        if connect:
            await self.connection.connect()

    async def stop(self) -> None:
        self.rooms.stop()
        await self.connection.disconnect()
        await self.api.close()
        self._started = False

    async def __aenter__(self) -> "QueueClientApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def doctor_session(self, doctor_id: str) -> DoctorDashboardSession:
        return DoctorDashboardSession(
            doctor_id, self.connection, self.rooms, self.api, self.notifier,
            remove_timeout=self.config.get('commands', 'remove_timeout', 15.0),
            room_join_timeout=self.config.get('commands', 'room_join_timeout', 10.0),
        )

    def patient_session(self, booking: BookingResult) -> PatientQueueSession:
        return PatientQueueSession.from_booking(
            booking, self.connection, self.rooms, self.api, self.notifier,
            timer_interval=self.config.get('wait_timer', 'interval', 60.0),
        )

    async def book(self, name: str, doctor_id: str) -> PatientQueueSession:
        """Book a consultation and return the (not yet started) patient session."""
        booking = await self.api.book_consultation(name, doctor_id)
        logger.info(f"Patient added to queue: {booking.patient_id} "
                    f"(position {booking.position_in_queue})")
        return self.patient_session(booking)
