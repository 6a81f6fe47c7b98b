"""Event names and payload helpers for the queue event channel."""
import enum
import uuid
from typing import Any, Dict, Optional


class ClientEvent(enum.Enum):
    """
    Events the client emits to the server.
    """
    JOIN_PATIENT_ROOM = "joinPatientRoom"  # Payload: {"patientId": str, "doctorId"?: str}
    JOIN_DOCTOR_ROOM = "joinDoctorRoom"  # Payload: {"doctorId": str}
    LEAVE_ROOM = "leaveRoom"  # Payload: {"roomId": str}
    START_CONSULTATION = "startConsultation"  # Payload: {"patientId": str, "doctorId": str}
    COMPLETE_CONSULTATION = "completeConsultation"  # Payload: {"patientId": str, "doctorId": str}
    REMOVE_PATIENT_FROM_QUEUE = "removePatientFromQueue"  # Payload: {"patientId", "doctorId", "reason", "requestId"}
    UPDATE_PATIENT_STATUS = "updatePatientStatus"  # Payload: {"patientId": str, "status": str}
    UPDATE_DOCTOR_AVAILABILITY = "updateDoctorAvailability"  # Payload: {"doctorId": str, "isAvailable": bool}


class ServerEvent(enum.Enum):
    """
    Events pushed by the server. Events signify that something *has happened*.
    """
    DOCTOR_ROOM_JOINED = "doctorRoomJoined"  # Payload: {"doctorId"?: str, ...}
    QUEUE_CHANGED = "queueChanged"  # Payload: {"queue": [...], "queueSummary"?: {...}, "version"?: int}
    QUEUE_UPDATE = "queueUpdate"  # Payload: {"position": int, "estimatedWaitTime": int}
    CONSULTATION_STARTED = "consultationStarted"  # Payload: {"patient": {...}, "doctor": {...}}
    CONSULTATION_COMPLETED = "consultationCompleted"  # Payload: {"patient": {...}, "doctor": {...}}
    PATIENT_STATUS_UPDATED = "patientStatusUpdated"  # Payload: {"patient", "doctor", "status", "reason"?}
    PATIENT_REMOVED = "patientRemoved"  # Payload: {"patient", "doctor", "reason"?}
    REMOVE_PATIENT_RESPONSE = "removePatientFromQueueResponse"  # Payload: {"success": bool, "message"?: str}
    ERROR = "error"  # Payload: {"code": str, "message": str}


class ConnectionEvent(enum.Enum):
    """
    Connection lifecycle notifications published by the connection manager.
    """
    CONNECT = "connect"  # Payload: None
    DISCONNECT = "disconnect"  # Payload: {"reason": Optional[str]}
    CONNECT_ERROR = "connect_error"  # Payload: {"error": str, "count": int}
    RECONNECT_ATTEMPT = "reconnect_attempt"  # Payload: {"attempt": int}
    RECONNECT_FAILED = "reconnect_failed"  # Payload: {"attempts": int}


# Error code the server uses when a doctor command arrives before the room join.
START_CONSULTATION_ERROR = "START_CONSULTATION_ERROR"


def patient_room(patient_id: str) -> str:
    """Room key for a patient's private broadcast scope."""
    return f"patient:{patient_id}"


def doctor_room(doctor_id: str) -> str:
    """Room key for a doctor's queue broadcast scope."""
    return f"doctor:{doctor_id}"


def new_request_id() -> str:
    return uuid.uuid4().hex


def create_patient_doctor_payload(patient_id: str, doctor_id: str, **extra: Any) -> Dict[str, Any]:
    """Creates the ``{patientId, doctorId}`` payload shared by doctor commands."""
    payload = {"patientId": patient_id, "doctorId": doctor_id}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


def entity_id(data: Any, key: str) -> Optional[str]:
    """Extract ``data[key]["id"]`` from a scoped event payload, or None."""
    if not isinstance(data, dict):
        return None
    entity = data.get(key)
    if not isinstance(entity, dict):
        return None
    value = entity.get("id")
    return str(value) if value is not None else None


def entity_name(data: Any, key: str, default: str = "") -> str:
    if not isinstance(data, dict) or not isinstance(data.get(key), dict):
        return default
    return str(data[key].get("name") or default)
