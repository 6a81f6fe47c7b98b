"""Test doubles for the Socket.IO transport and the HTTP API."""
import asyncio
import copy
from datetime import datetime, timedelta, timezone

import socketio

from medqueue.core.errors import ApiError
from medqueue.core.models import BookingResult, DoctorQueueSnapshot
from medqueue.utils.config_loader import ConfigManager

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def make_config(tmp_path, **sections):
    """Configuration with short timeouts and immediate reconnection."""
    overrides = {
        "server": {"base_url": "http://127.0.0.1:9"},
        "socket": {
            "timeout": 1.0,
            "reconnection_attempts": 3,
            "reconnection_delay": 0,
            "reconnection_delay_max": 0,
            "randomization_factor": 0
        },
        "commands": {"remove_timeout": 0.2, "room_join_timeout": 0.2},
        "wait_timer": {"interval": 60}
    }
    for section, values in sections.items():
        overrides.setdefault(section, {}).update(values)
    return ConfigManager(config_dir=str(tmp_path), overrides=overrides, load_env=False)


def queue_item(patient_id, status="waiting", minutes=0, name=None, waiting_time=0, **extra):
    """Queue entry payload as the server sends it."""
    item = {
        "id": patient_id,
        "name": name or f"Patient {patient_id}",
        "status": status,
        "joined_at": (BASE_TIME + timedelta(minutes=minutes)).isoformat(),
        "waitingTime": waiting_time,
    }
    item.update(extra)
    return item


class FakeSocketClient:
    """Stands in for socketio.AsyncClient: records emits, lets tests push events."""

    def __init__(self, fail_connects=0, always_fail=False):
        self.handlers = {}
        self.connected = False
        self.emitted = []
        self.connect_calls = 0
        self.connect_kwargs = None
        self.url = None
        self.fail_connects = fail_connects
        self.always_fail = always_fail

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls += 1
        self.url = url
        self.connect_kwargs = kwargs
        if self.always_fail or self.connect_calls <= self.fail_connects:
            raise socketio.exceptions.ConnectionError("Connection refused")
        self.connected = True
        await self._trigger('connect')

    async def disconnect(self):
        if self.connected:
            self.connected = False
            await self._trigger('disconnect', 'client disconnect')

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def _trigger(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(*args)

    async def server_push(self, event, data=None):
        """Deliver a server event to the registered handler."""
        if data is None:
            await self._trigger(event)
        else:
            await self._trigger(event, data)

    async def drop(self, reason='transport close'):
        """Simulate the server side closing the connection."""
        self.connected = False
        await self._trigger('disconnect', reason)

    def emitted_events(self):
        return [event for event, _ in self.emitted]

    def payloads(self, event):
        return [data for name, data in self.emitted if name == event]

    def last_payload(self, event):
        payloads = self.payloads(event)
        return payloads[-1] if payloads else None


class FakeQueueApi:
    """In-memory stand-in for QueueApiClient."""

    def __init__(self, snapshot=None, wait_time=0):
        self.snapshot = snapshot or DoctorQueueSnapshot(doctor=None)
        self.wait_time = wait_time
        self.queue_calls = 0
        self.fail_queue = False
        self.removed = []
        self.remove_error = None
        self.bookings = []

    async def get_doctor_queue(self, doctor_id):
        self.queue_calls += 1
        if self.fail_queue:
            raise ApiError("HTTP error! status: 500", status=500)
        return copy.deepcopy(self.snapshot)

    async def get_estimated_wait_time(self, doctor_id):
        return self.wait_time

    async def remove_patient(self, patient_id, reason=None):
        if self.remove_error is not None:
            raise self.remove_error
        self.removed.append((patient_id, reason))
        return {"success": True}

    async def book_consultation(self, name, doctor_id):
        booking = BookingResult(
            patient_id=f"P{len(self.bookings) + 1}",
            patient_name=name,
            doctor_id=doctor_id,
            doctor_name="Dr. House",
            position_in_queue=3,
            estimated_wait_time=45,
        )
        self.bookings.append(booking)
        return booking

    async def close(self):
        pass


async def settle(rounds=10):
    """Let scheduled callbacks and spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
