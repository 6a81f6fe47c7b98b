"""Event reconciliation for locally held queue state.

The server is authoritative. Local state is a fold over the events it pushes:

- snapshot events (``queueChanged``, or ``queueUpdate`` carrying a queue array)
  replace the whole entry set verbatim
- scoped events (``consultationStarted``, ``consultationCompleted``,
  ``patientRemoved``, ``patientStatusUpdated``) patch a single entry, and only when
  the event's doctor/patient identity matches the local context

Nothing here raises on bad input: mismatched or malformed events are ignored and the
``apply_*`` methods report whether local state changed.

Optimistic writes made right after a command are remembered per entry and dropped
when the next authoritative event touches that entry. A snapshot carrying a
``version`` (or ``updatedAt``) older than the newest one already applied is discarded
as stale; unstamped snapshots always replace.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    Doctor, DoctorQueueSnapshot, PatientStatus, QueueEntry, QueuePosition,
    QueueStats, parse_timestamp
)
from ..utils.event_utils import ServerEvent, entity_id

logger = logging.getLogger(__name__)


def parse_entries(queue: Iterable[Any]) -> List[QueueEntry]:
    """Parse a snapshot array, skipping items that are not usable entries."""
    entries = []
    for item in queue:
        if isinstance(item, QueueEntry):
            entries.append(item)
            continue
        try:
            entries.append(QueueEntry.from_dict(item))
        except ValueError as e:
            logger.debug(f"Skipping malformed queue entry: {e}")
    return entries


def snapshot_version(data: Dict[str, Any]) -> Optional[float]:
    """Comparable version stamp of a snapshot payload, or None if unstamped."""
    value = data.get("version", data.get("updatedAt"))
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else None


def compute_position(entries: Iterable[QueueEntry], patient_id: str,
                     doctor_id: Optional[str]) -> Optional[int]:
    """Derive a queue position from a local entry set.

    Position is 1 + the number of waiting entries for the same doctor that joined
    strictly earlier. Entries without a doctor id are taken to belong to the doctor
    whose queue they came from. Returns None if the patient or its join time is
    unknown.
    """
    entries = list(entries)
    mine = next((e for e in entries if e.id == patient_id), None)
    if mine is None or mine.joined_at is None:
        return None
    ahead = [
        e for e in entries
        if e.id != patient_id
        and e.status is PatientStatus.WAITING
        and e.doctor_id in (None, doctor_id)
        and e.joined_at is not None
        and e.joined_at < mine.joined_at
    ]
    return 1 + len(ahead)


class DoctorQueueState:
    """Queue held by a doctor dashboard."""

    def __init__(self, doctor_id: str):
        self.doctor_id = doctor_id
        self.doctor = Doctor.placeholder(doctor_id)
        self.entries: List[QueueEntry] = []
        self.stats = QueueStats()
        self.optimistic: Dict[str, PatientStatus] = {}
        self.last_version: Optional[float] = None

    # --- Queries ---

    def get_entry(self, patient_id: str) -> Optional[QueueEntry]:
        return next((e for e in self.entries if e.id == patient_id), None)

    def status_of(self, patient_id: str) -> Optional[PatientStatus]:
        entry = self.get_entry(patient_id)
        return entry.status if entry else None

    def patient_ids(self) -> List[str]:
        return [e.id for e in self.entries]

    # --- Snapshots ---

    def apply_snapshot(self, queue: Any, summary: Optional[Dict[str, Any]] = None,
                       version: Optional[float] = None) -> bool:
        """Replace the entry set with ``queue``. Returns False if the snapshot was dropped."""
        if not isinstance(queue, list):
            logger.debug(f"Ignoring snapshot without a queue array: {queue!r}")
            return False
        if version is not None:
            if self.last_version is not None and version < self.last_version:
                logger.info(f"Discarding stale queue snapshot v{version} (have v{self.last_version})")
                return False
            self.last_version = version

        self.entries = parse_entries(queue)
        self.optimistic.clear()
        if isinstance(summary, dict):
            self.stats = QueueStats.from_summary(summary)
        else:
            self.stats = QueueStats.from_entries(self.entries)
        logger.debug(f"Queue snapshot applied: {len(self.entries)} entries")
        return True

    def apply_queue_changed(self, data: Any) -> bool:
        if not isinstance(data, dict):
            return False
        summary = data.get("queueSummary") or data.get("statistics")
        return self.apply_snapshot(data.get("queue"), summary, snapshot_version(data))

    def apply_fetched(self, snapshot: DoctorQueueSnapshot) -> None:
        """Install a queue fetched over HTTP."""
        if snapshot.doctor is not None:
            self.doctor = snapshot.doctor
        self.entries = list(snapshot.queue)
        self.optimistic.clear()
        self.stats = snapshot.summary or QueueStats.from_entries(self.entries)

    def reset(self) -> None:
        """Fall back to an empty dashboard after a failed fetch."""
        self.doctor = Doctor.placeholder(self.doctor_id)
        self.entries = []
        self.optimistic.clear()
        self.stats = QueueStats()

    # --- Scoped events ---

    def _matches_doctor(self, data: Any) -> bool:
        return entity_id(data, "doctor") == str(self.doctor_id)

    def _set_status(self, patient_id: str, status: PatientStatus) -> bool:
        for index, entry in enumerate(self.entries):
            if entry.id == patient_id:
                self.entries[index] = entry.with_status(status)
                self.stats = QueueStats.from_entries(self.entries)
                return True
        return False

    def remove_entry(self, patient_id: str) -> bool:
        self.optimistic.pop(patient_id, None)
        remaining = [e for e in self.entries if e.id != patient_id]
        if len(remaining) == len(self.entries):
            return False
        self.entries = remaining
        self.stats = QueueStats.from_entries(self.entries)
        return True

    def apply_consultation_started(self, data: Any) -> bool:
        patient_id = entity_id(data, "patient")
        if patient_id is None or not self._matches_doctor(data):
            return False
        self.optimistic.pop(patient_id, None)
        return self._set_status(patient_id, PatientStatus.CONSULTING)

    def apply_consultation_completed(self, data: Any) -> bool:
        patient_id = entity_id(data, "patient")
        if patient_id is None or not self._matches_doctor(data):
            return False
        return self.remove_entry(patient_id)

    def apply_patient_removed(self, data: Any) -> bool:
        patient_id = entity_id(data, "patient")
        if patient_id is None:
            return False
        if entity_id(data, "doctor") is not None:
            if not self._matches_doctor(data):
                return False
        elif self.get_entry(patient_id) is None:
            return False
        return self.remove_entry(patient_id)

    def apply_patient_status_updated(self, data: Any) -> bool:
        patient_id = entity_id(data, "patient")
        if patient_id is None or not self._matches_doctor(data):
            return False
        raw_status = str(data.get("status") or "").lower()
        if raw_status not in {s.value for s in PatientStatus}:
            # Informational statuses such as "next" do not change the entry.
            return False
        status = PatientStatus(raw_status)
        if status is PatientStatus.REMOVED:
            return self.remove_entry(patient_id)
        self.optimistic.pop(patient_id, None)
        return self._set_status(patient_id, status)

    def apply_event(self, event: str, data: Any) -> bool:
        """Route a server event to the matching fold. Unknown events are ignored."""
        handler = {
            ServerEvent.QUEUE_CHANGED.value: self.apply_queue_changed,
            ServerEvent.QUEUE_UPDATE.value: self.apply_queue_changed,
            ServerEvent.CONSULTATION_STARTED.value: self.apply_consultation_started,
            ServerEvent.CONSULTATION_COMPLETED.value: self.apply_consultation_completed,
            ServerEvent.PATIENT_REMOVED.value: self.apply_patient_removed,
            ServerEvent.PATIENT_STATUS_UPDATED.value: self.apply_patient_status_updated,
        }.get(event)
        if handler is None:
            return False
        try:
            return handler(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed '{event}' event: {e}")
            return False

    # --- Optimistic writes ---

    def mark_optimistic(self, patient_id: str, status: PatientStatus) -> bool:
        """Set a status ahead of server confirmation."""
        if not self._set_status(patient_id, status):
            return False
        self.optimistic[patient_id] = status
        return True

    def is_optimistic(self, patient_id: str) -> bool:
        return patient_id in self.optimistic


class PatientQueueState:
    """A patient's own view of its place in a doctor's queue."""

    def __init__(self, patient_id: str, doctor_id: str,
                 position: Optional[int] = None,
                 estimated_wait_time: int = 0,
                 status: PatientStatus = PatientStatus.WAITING):
        self.patient_id = patient_id
        self.doctor_id = doctor_id
        self.position = position
        self.estimated_wait_time = estimated_wait_time
        self.status = status
        self.status_reason: Optional[str] = None
        self.connection_issue = False
        self.has_server_position = False
        self.updated_at: Optional[datetime] = None

    def _matches(self, data: Any) -> bool:
        if entity_id(data, "patient") != str(self.patient_id):
            return False
        doctor_id = entity_id(data, "doctor")
        return doctor_id is None or doctor_id == str(self.doctor_id)

    def _touch(self) -> None:
        self.updated_at = datetime.now()

    def apply_queue_update(self, data: Any) -> Optional[QueuePosition]:
        """Apply a position push. Returns the new position, or None if ignored."""
        if self.status.is_terminal:
            return None
        if isinstance(data, dict) and data.get("patientId") is not None \
                and str(data["patientId"]) != str(self.patient_id):
            return None
        update = QueuePosition.from_dict(data)
        if update is None:
            return None
        self.position = update.position
        if update.estimated_wait_time is not None:
            self.estimated_wait_time = update.estimated_wait_time
        self.has_server_position = True
        self._touch()
        return update

    def apply_consultation_started(self, data: Any) -> bool:
        if not self._matches(data):
            return False
        self.status = PatientStatus.CONSULTING
        self._touch()
        return True

    def apply_consultation_completed(self, data: Any) -> bool:
        if not self._matches(data):
            return False
        self.status = PatientStatus.COMPLETED
        self._touch()
        return True

    def apply_patient_removed(self, data: Any) -> bool:
        if not self._matches(data):
            return False
        self.status = PatientStatus.REMOVED
        self.status_reason = data.get("reason")
        self._touch()
        return True

    def apply_patient_status_updated(self, data: Any) -> Optional[str]:
        """Returns the pushed status string, or None if the event was not for us."""
        if not self._matches(data):
            return None
        raw_status = str(data.get("status") or "").lower()
        self.status_reason = data.get("reason")
        if raw_status in {s.value for s in PatientStatus}:
            self.status = PatientStatus(raw_status)
        self._touch()
        return raw_status

    def derive_position(self, entries: Iterable[QueueEntry]) -> Optional[int]:
        """Fill in the position from a local queue when the server has not pushed one."""
        if self.has_server_position:
            return self.position
        position = compute_position(entries, self.patient_id, self.doctor_id)
        if position is not None:
            self.position = position
        return self.position

    def set_connection_issue(self, flag: bool) -> None:
        """Connectivity loss keeps the last known position; it is not a removal."""
        self.connection_issue = flag
