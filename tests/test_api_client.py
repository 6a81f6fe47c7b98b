"""Tests for the REST API client against a local aiohttp server."""
import pytest
import pytest_asyncio
from aiohttp import web

from medqueue.core.api_client import QueueApiClient
from medqueue.core.errors import ApiError
from medqueue.core.models import PatientStatus

from fakes import queue_item

pytestmark = pytest.mark.asyncio


class BackendStub:
    """Routes mirroring the queue backend, with canned responses."""

    def __init__(self):
        self.requests = []
        self.wait_time_status = 200

    def routes(self):
        return [
            web.get('/api/doctors', self.list_doctors),
            web.get('/api/doctors/{doctor_id}/queue', self.doctor_queue),
            web.get('/api/doctors/{doctor_id}/estimated-wait-time', self.wait_time),
            web.post('/api/patients/add-patient', self.add_patient),
            web.delete('/api/patients/{patient_id}', self.remove_patient),
        ]

    async def list_doctors(self, request):
        return web.json_response({"success": True, "data": {"doctors": [
            {"id": 1, "name": "Grey", "specialization": "Surgery",
             "averageConsultationTime": 15, "isAvailable": True},
            {"id": "D2", "name": "House"},
        ]}})

    async def doctor_queue(self, request):
        doctor_id = request.match_info['doctor_id']
        if doctor_id == "missing":
            return web.json_response({"success": False, "message": "Doctor not found"}, status=404)
        if doctor_id == "broken":
            return web.Response(text="<html>oops</html>", content_type="text/html")
        data = {
            "doctor": {"id": doctor_id, "name": "Grey"},
            "queue": [queue_item("P1", minutes=0), queue_item("P2", status="in-progress")],
        }
        if doctor_id == "D1":
            data["queueSummary"] = {"total": 2, "waiting": 1, "consulting": 1, "completed": 0}
        return web.json_response({"success": True, "data": data})

    async def wait_time(self, request):
        if self.wait_time_status != 200:
            return web.json_response({"success": False}, status=self.wait_time_status)
        return web.json_response({"success": True, "data": {"estimatedWaitTime": 25}})

    async def add_patient(self, request):
        body = await request.json()
        self.requests.append(("add", body))
        return web.json_response({"success": True, "data": {
            "patient": {"id": "P7", "status": "waiting", "positionInQueue": 3,
                        "doctor_name": "Grey"},
            "estimatedWaitTime": 45,
        }})

    async def remove_patient(self, request):
        body = await request.json()
        self.requests.append(("remove", request.match_info['patient_id'], body))
        if request.match_info['patient_id'] == "gone":
            return web.json_response({"success": False, "message": "Patient not in queue"})
        return web.json_response({"ok": True})


@pytest.fixture
def backend():
    return BackendStub()


@pytest_asyncio.fixture
async def api(backend):
    """API client pointed at a backend stub on an ephemeral port."""
    app = web.Application()
    app.add_routes(backend.routes())
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', 0)
    await site.start()
    port = runner.addresses[0][1]

    client = QueueApiClient(f"http://127.0.0.1:{port}/", timeout=2.0)
    try:
        yield client
    finally:
        await client.close()
        await runner.cleanup()


async def test_list_doctors(api):
    doctors = await api.list_doctors()
    assert [d.id for d in doctors] == ["1", "D2"]
    assert doctors[0].specialization == "Surgery"
    assert doctors[0].average_consultation_time == 15
    assert doctors[0].is_available is True
    assert doctors[1].is_available is None


async def test_get_doctor_queue_with_summary(api):
    snapshot = await api.get_doctor_queue("D1")
    assert snapshot.doctor.name == "Grey"
    assert [e.id for e in snapshot.queue] == ["P1", "P2"]
    assert snapshot.queue[1].status is PatientStatus.CONSULTING
    assert snapshot.summary.total == 2


async def test_get_doctor_queue_without_summary(api):
    snapshot = await api.get_doctor_queue("D3")
    assert snapshot.summary is None


async def test_http_error_uses_server_message(api):
    with pytest.raises(ApiError) as exc_info:
        await api.get_doctor_queue("missing")
    assert str(exc_info.value) == "Doctor not found"
    assert exc_info.value.status == 404


async def test_malformed_body_raises(api):
    with pytest.raises(ApiError):
        await api.get_doctor_queue("broken")


async def test_estimated_wait_time(api, backend):
    assert await api.get_estimated_wait_time("D1") == 25
    backend.wait_time_status = 500
    assert await api.get_estimated_wait_time("D1") == 0


async def test_book_consultation(api, backend):
    booking = await api.book_consultation("  Ada  ", "D1")
    assert backend.requests == [("add", {"name": "Ada", "doctorId": "D1"})]
    assert booking.patient_id == "P7"
    assert booking.patient_name == "Ada"
    assert booking.doctor_name == "Grey"
    assert booking.position_in_queue == 3
    assert booking.estimated_wait_time == 45
    assert booking.status is PatientStatus.WAITING


@pytest.mark.parametrize("name,doctor_id,message", [
    ("", "D1", "Please enter your name"),
    ("   ", "D1", "Please enter your name"),
    ("Ada", "", "Please select a doctor"),
])
async def test_book_consultation_validates_input(api, backend, name, doctor_id, message):
    with pytest.raises(ValueError, match=message):
        await api.book_consultation(name, doctor_id)
    assert backend.requests == []


async def test_remove_patient(api, backend):
    assert await api.remove_patient("P1", "Feeling better") == {"ok": True}
    assert backend.requests == [("remove", "P1", {"reason": "Feeling better"})]


async def test_remove_patient_rejected(api):
    with pytest.raises(ApiError, match="Patient not in queue"):
        await api.remove_patient("gone")


async def test_unreachable_server_raises_api_error():
    client = QueueApiClient("http://127.0.0.1:9", timeout=1.0)
    try:
        with pytest.raises(ApiError):
            await client.list_doctors()
    finally:
        await client.close()
