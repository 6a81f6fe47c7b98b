"""Socket.IO side of the MedQueue client: connection, rooms and sessions."""
from .connection import ConnectionManager
from .rooms import RoomSubscriptions
from .doctor_session import DoctorDashboardSession
from .patient_session import PatientQueueSession

__all__ = [
    'ConnectionManager',
    'RoomSubscriptions',
    'DoctorDashboardSession',
    'PatientQueueSession'
]
