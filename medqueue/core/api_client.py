"""HTTP client for the queue backend REST API.

Every response is wrapped as ``{"success": bool, "data": {...}, "message"?: str}``.
Non-2xx statuses and bodies that do not match the expected shape raise ``ApiError``;
callers decide whether to fall back to empty state.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import ApiError
from .models import (
    BookingResult, Doctor, DoctorQueueSnapshot, PatientStatus, QueueStats
)
from .reconciliation import parse_entries

logger = logging.getLogger(__name__)

DOCTORS_ENDPOINT = "/api/doctors"
PATIENTS_ENDPOINT = "/api/patients"


class QueueApiClient:
    def __init__(self, base_url: str, timeout: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "QueueApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str,
                       json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            async with self._get_session().request(method, url, json=json_body) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                if response.status >= 400:
                    message = body.get("message") if isinstance(body, dict) else None
                    raise ApiError(message or f"HTTP error! status: {response.status}",
                                   status=response.status)
                if not isinstance(body, dict):
                    raise ApiError(f"Malformed response from {path}", status=response.status)
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"Request to {path} failed: {e}") from e

    @staticmethod
    def _data(body: Dict[str, Any], path: str) -> Dict[str, Any]:
        if not body.get("success"):
            raise ApiError(body.get("message") or f"Request to {path} was not successful")
        data = body.get("data")
        if not isinstance(data, dict):
            raise ApiError(f"Response from {path} has no data object")
        return data

    # --- Doctors ---

    async def list_doctors(self) -> List[Doctor]:
        data = self._data(await self._request("GET", DOCTORS_ENDPOINT), DOCTORS_ENDPOINT)
        doctors = data.get("doctors")
        if not isinstance(doctors, list):
            raise ApiError("Failed to fetch doctors data")
        try:
            return [Doctor.from_dict(d) for d in doctors]
        except ValueError as e:
            raise ApiError(f"Malformed doctor entry: {e}") from e

    async def get_doctor_queue(self, doctor_id: str) -> DoctorQueueSnapshot:
        path = f"{DOCTORS_ENDPOINT}/{doctor_id}/queue"
        data = self._data(await self._request("GET", path), path)

        doctor = None
        if isinstance(data.get("doctor"), dict):
            try:
                doctor = Doctor.from_dict(data["doctor"])
            except ValueError as e:
                raise ApiError(f"Malformed doctor in queue response: {e}") from e

        queue = data.get("queue")
        entries = parse_entries(queue) if isinstance(queue, list) else []
        summary = data.get("queueSummary") or data.get("statistics")
        return DoctorQueueSnapshot(
            doctor=doctor,
            queue=entries,
            summary=QueueStats.from_summary(summary) if isinstance(summary, dict) else None,
        )

    async def get_estimated_wait_time(self, doctor_id: str) -> int:
        """Estimated wait in minutes; 0 when the estimate cannot be fetched."""
        path = f"{DOCTORS_ENDPOINT}/{doctor_id}/estimated-wait-time"
        try:
            data = self._data(await self._request("GET", path), path)
            return int(data.get("estimatedWaitTime") or 0)
        except (ApiError, TypeError, ValueError) as e:
            logger.error(f"Error fetching estimated wait time: {e}")
            return 0

    # --- Patients ---

    async def book_consultation(self, name: str, doctor_id: str) -> BookingResult:
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter your name")
        if not doctor_id:
            raise ValueError("Please select a doctor")

        path = f"{PATIENTS_ENDPOINT}/add-patient"
        body = await self._request("POST", path, {"name": name, "doctorId": doctor_id})
        if not body.get("success"):
            raise ApiError(body.get("message") or "Failed to add patient to queue")
        data = body.get("data") or {}
        patient = data.get("patient")
        if not isinstance(patient, dict) or patient.get("id") is None:
            raise ApiError("Booking response has no patient")

        return BookingResult(
            patient_id=str(patient["id"]),
            patient_name=name,
            doctor_id=doctor_id,
            doctor_name=str(patient.get("doctor_name") or ""),
            status=PatientStatus.parse(patient.get("status")),
            position_in_queue=int(patient.get("positionInQueue") or 0),
            estimated_wait_time=int(data.get("estimatedWaitTime") or 0),
        )

    async def remove_patient(self, patient_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Take a patient out of the queue. Raises ApiError unless the server confirms."""
        path = f"{PATIENTS_ENDPOINT}/{patient_id}"
        body = await self._request("DELETE", path, {"reason": reason} if reason else {})
        if not (body.get("success") or body.get("ok")):
            raise ApiError(body.get("message") or "Failed to remove from queue")
        return body
