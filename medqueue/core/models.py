"""Domain models for the MedQueue client.

Server payloads are camelCase JSON objects that are not always consistent (``joined_at``
vs ``joinedAt``, ``waitingTime`` vs ``waitingTimeMinutes``). The ``from_dict``
constructors accept both spellings and fall back to zero values for missing fields.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class PatientStatus(Enum):
    """Status of a patient in a doctor's queue."""
    WAITING = "waiting"
    CONSULTING = "consulting"
    COMPLETED = "completed"
    LATE = "late"
    REMOVED = "removed"

    @classmethod
    def parse(cls, value: Any, default: "PatientStatus" = None) -> "PatientStatus":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text == "in-progress":
            return cls.CONSULTING
        try:
            return cls(text)
        except ValueError:
            logger.debug(f"Unknown patient status {value!r}")
            return default if default is not None else cls.WAITING

    @property
    def is_terminal(self) -> bool:
        return self in (PatientStatus.COMPLETED, PatientStatus.REMOVED)

    @property
    def is_waiting(self) -> bool:
        """Waiting for the countdown's purposes; a late notice does not stop it."""
        return self in (PatientStatus.WAITING, PatientStatus.LATE)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string or epoch milliseconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class QueueEntry:
    """One patient's position in one doctor's queue."""
    id: str
    name: str = ""
    status: PatientStatus = PatientStatus.WAITING
    joined_at: Optional[datetime] = None
    waiting_time: int = 0
    doctor_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError(f"Queue entry without id: {data!r}")
        doctor_id = data.get("doctorId", data.get("doctor_id"))
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            status=PatientStatus.parse(data.get("status")),
            joined_at=parse_timestamp(data.get("joined_at", data.get("joinedAt"))),
            waiting_time=_to_int(data.get("waitingTime", data.get("waitingTimeMinutes"))),
            doctor_id=str(doctor_id) if doctor_id is not None else None,
        )

    def with_status(self, status: PatientStatus) -> "QueueEntry":
        return replace(self, status=status)


@dataclass
class QueueStats:
    total: int = 0
    waiting: int = 0
    consulting: int = 0
    completed: int = 0
    average_wait_time: float = 0.0

    @classmethod
    def from_summary(cls, summary: Dict[str, Any]) -> "QueueStats":
        """Server-supplied summaries are trusted as-is."""
        return cls(
            total=_to_int(summary.get("total")),
            waiting=_to_int(summary.get("waiting")),
            consulting=_to_int(summary.get("consulting")),
            completed=_to_int(summary.get("completed")),
            average_wait_time=_to_float(summary.get("averageWaitTime")),
        )

    @classmethod
    def from_entries(cls, entries: Iterable[QueueEntry]) -> "QueueStats":
        """Fold a local entry set. Late counts as waiting; removed entries are skipped."""
        waiting = consulting = completed = 0
        waiting_times = []
        for entry in entries:
            if entry.status is PatientStatus.REMOVED:
                continue
            if entry.status is PatientStatus.CONSULTING:
                consulting += 1
            elif entry.status is PatientStatus.COMPLETED:
                completed += 1
            else:
                waiting += 1
                waiting_times.append(entry.waiting_time)
        average = round(sum(waiting_times) / len(waiting_times), 1) if waiting_times else 0.0
        return cls(
            total=waiting + consulting + completed,
            waiting=waiting,
            consulting=consulting,
            completed=completed,
            average_wait_time=average,
        )


@dataclass
class Doctor:
    id: str
    name: str = ""
    specialization: str = ""
    average_consultation_time: int = 0
    is_available: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Doctor":
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError(f"Doctor without id: {data!r}")
        available = data.get("isAvailable", data.get("is_available"))
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            specialization=str(data.get("specialization") or ""),
            average_consultation_time=_to_int(
                data.get("averageConsultationTime", data.get("average_consultation_time"))),
            is_available=bool(available) if available is not None else None,
        )

    @classmethod
    def placeholder(cls, doctor_id: str) -> "Doctor":
        return cls(id=doctor_id)


@dataclass
class QueuePosition:
    position: int
    estimated_wait_time: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["QueuePosition"]:
        """None when the payload carries no position."""
        if not isinstance(data, dict) or data.get("position") is None:
            return None
        estimate = data.get("estimatedWaitTime")
        return cls(
            position=_to_int(data["position"]),
            estimated_wait_time=None if estimate is None else _to_int(estimate),
        )


@dataclass
class DoctorQueueSnapshot:
    doctor: Optional[Doctor]
    queue: List[QueueEntry] = field(default_factory=list)
    summary: Optional[QueueStats] = None


@dataclass
class BookingResult:
    patient_id: str
    patient_name: str
    doctor_id: str
    doctor_name: str = ""
    status: PatientStatus = PatientStatus.WAITING
    position_in_queue: int = 0
    estimated_wait_time: int = 0
