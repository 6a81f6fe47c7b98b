"""Test configuration and fixtures for the MedQueue client tests."""
import os
import sys

import pytest
import pytest_asyncio

# Add application root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from medqueue.core.message_system import NotificationCenter
from medqueue.core.models import Doctor, DoctorQueueSnapshot, PatientStatus, QueueEntry
from medqueue.socketio_client.connection import ConnectionManager
from medqueue.socketio_client.rooms import RoomSubscriptions

from fakes import FakeQueueApi, FakeSocketClient, make_config, queue_item


@pytest.fixture
def test_config(tmp_path):
    """Provide test configuration."""
    return make_config(tmp_path)


@pytest.fixture
def notifier():
    return NotificationCenter()


@pytest.fixture
def fake_sio():
    return FakeSocketClient()


@pytest.fixture
def connection(test_config, notifier, fake_sio):
    """Connection manager wired to the fake transport."""
    return ConnectionManager(test_config, notifier, client_factory=lambda: fake_sio)


@pytest.fixture
def rooms(connection):
    subscriptions = RoomSubscriptions(connection)
    subscriptions.start()
    yield subscriptions
    subscriptions.stop()


@pytest_asyncio.fixture
async def connected(connection, rooms):
    """Connected manager with the room layer listening."""
    await connection.connect()
    yield connection
    await connection.disconnect()


@pytest.fixture
def doctor_snapshot():
    return DoctorQueueSnapshot(
        doctor=Doctor(id="D1", name="Grey", specialization="Surgery"),
        queue=[
            QueueEntry.from_dict(queue_item("P1", minutes=0)),
            QueueEntry.from_dict(queue_item("P2", minutes=5)),
            QueueEntry.from_dict(queue_item("P3", status=PatientStatus.CONSULTING.value, minutes=1)),
        ],
    )


@pytest.fixture
def fake_api(doctor_snapshot):
    return FakeQueueApi(snapshot=doctor_snapshot, wait_time=20)
