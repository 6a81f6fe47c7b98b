"""Tests for the shared Socket.IO connection manager."""
import pytest

from medqueue.core.errors import ConnectivityError
from medqueue.core.message_system import NotificationLevel
from medqueue.socketio_client.connection import ConnectionManager
from medqueue.utils.event_utils import ConnectionEvent, ServerEvent

from fakes import FakeSocketClient, make_config, settle

pytestmark = pytest.mark.asyncio


def record(connection, event):
    received = []
    connection.on(event, received.append)
    return received


async def test_connect_sets_state(connection, fake_sio):
    """Test a successful connect."""
    connected = record(connection, ConnectionEvent.CONNECT)

    assert await connection.connect()
    assert connection.is_connected
    assert connection.connection_attempts == 0
    assert fake_sio.connect_calls == 1
    assert fake_sio.url == "http://127.0.0.1:9"
    assert fake_sio.connect_kwargs["transports"] == ["websocket", "polling"]
    assert fake_sio.connect_kwargs["wait_timeout"] == 1.0
    assert connected == [None]


async def test_connect_is_idempotent(test_config, notifier):
    """Test a second connect reuses the live handle."""
    created = []

    def factory():
        client = FakeSocketClient()
        created.append(client)
        return client

    connection = ConnectionManager(test_config, notifier, client_factory=factory)
    assert await connection.connect()
    assert await connection.connect()

    assert len(created) == 1
    assert created[0].connect_calls == 1
    await connection.disconnect()


async def test_disconnect_resets_state(connection, fake_sio):
    """Test disconnect clears the handle and the counters."""
    disconnected = record(connection, ConnectionEvent.DISCONNECT)
    await connection.connect()

    await connection.disconnect()
    assert not connection.is_connected
    assert connection.sio is None
    assert connection.connection_attempts == 0
    assert len(disconnected) == 1

    # Safe to repeat, and nothing tries to reconnect afterwards
    await connection.disconnect()
    await settle()
    assert len(disconnected) == 1
    assert fake_sio.connect_calls == 1
    assert not connection.is_reconnecting


async def test_disconnect_without_connection_is_safe(connection):
    await connection.disconnect()
    assert not connection.is_connected


async def test_reconnect_gives_up_after_ceiling(test_config, notifier):
    """Test the attempt ceiling and the user-visible notices when the server is down."""
    fake = FakeSocketClient(always_fail=True)
    connection = ConnectionManager(test_config, notifier, client_factory=lambda: fake)
    attempts = record(connection, ConnectionEvent.RECONNECT_ATTEMPT)
    failed = record(connection, ConnectionEvent.RECONNECT_FAILED)

    assert not await connection.connect()
    await connection.wait_for_reconnect()

    # One initial attempt plus three reconnection attempts
    assert fake.connect_calls == 4
    assert [a["attempt"] for a in attempts] == [1, 2, 3]
    assert connection.connection_attempts == 3
    assert failed == [{"attempts": 3}]
    assert not connection.is_connected

    warnings = notifier.get_by_level(NotificationLevel.WARNING)
    errors = notifier.get_by_level(NotificationLevel.ERROR)
    assert [n.title for n in warnings] == ["Connection Error", "Connection Error"]
    assert [n.title for n in errors] == ["Connection Failed"]

    # Exhausted: no further attempts on its own
    await settle()
    assert fake.connect_calls == 4
    assert not connection.is_reconnecting


async def test_reconnect_succeeds_within_ceiling(test_config, notifier):
    fake = FakeSocketClient(fail_connects=2)
    connection = ConnectionManager(test_config, notifier, client_factory=lambda: fake)

    assert not await connection.connect()
    assert await connection.connect() is False  # loop already running

    await connection.wait_for_reconnect()
    assert connection.is_connected
    assert connection.connection_attempts == 0
    assert fake.connect_calls == 3
    assert notifier.get_by_level(NotificationLevel.ERROR) == []
    await connection.disconnect()


async def test_server_drop_triggers_reconnect(connection, fake_sio):
    """Test an unexpected disconnect hands over to the reconnection loop."""
    disconnected = record(connection, ConnectionEvent.DISCONNECT)
    await connection.connect()

    await fake_sio.drop("transport close")
    assert not connection.is_connected
    assert disconnected == [{"reason": "transport close"}]

    await connection.wait_for_reconnect()
    assert connection.is_connected
    assert fake_sio.connect_calls == 2
    await connection.disconnect()


async def test_no_reconnect_when_disabled(tmp_path, notifier):
    config = make_config(tmp_path, socket={"reconnection": False})
    fake = FakeSocketClient(always_fail=True)
    connection = ConnectionManager(config, notifier, client_factory=lambda: fake)

    assert not await connection.connect()
    assert not connection.is_reconnecting
    assert fake.connect_calls == 1


async def test_emit_requires_connection(connection, fake_sio):
    with pytest.raises(ConnectivityError):
        await connection.emit("leaveRoom", {"roomId": "doctor:D1"})
    assert fake_sio.emitted == []

    await connection.connect()
    await connection.emit("leaveRoom", {"roomId": "doctor:D1"})
    assert fake_sio.emitted == [("leaveRoom", {"roomId": "doctor:D1"})]
    await connection.disconnect()


async def test_server_events_fan_out(connection, fake_sio):
    """Test several listeners share one server event and can be disposed independently."""
    await connection.connect()
    first, second = [], []
    subscription = connection.on(ServerEvent.QUEUE_CHANGED, first.append)
    connection.on("queueChanged", second.append)

    await fake_sio.server_push("queueChanged", {"queue": []})
    subscription.dispose()
    await fake_sio.server_push("queueChanged", {"queue": [], "version": 2})

    assert first == [{"queue": []}]
    assert len(second) == 2
    await connection.disconnect()


async def test_backoff_delay_is_capped(tmp_path, notifier):
    config = make_config(tmp_path, socket={
        "reconnection_delay": 1.0,
        "reconnection_delay_max": 5.0,
        "randomization_factor": 0,
    })
    connection = ConnectionManager(config, notifier, client_factory=FakeSocketClient)
    assert [connection._backoff_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


async def test_backoff_delay_randomization_stays_in_bounds(tmp_path, notifier):
    config = make_config(tmp_path, socket={
        "reconnection_delay": 1.0,
        "reconnection_delay_max": 5.0,
        "randomization_factor": 0.5,
    })
    connection = ConnectionManager(config, notifier, client_factory=FakeSocketClient)
    for _ in range(20):
        assert 0.5 <= connection._backoff_delay(0) <= 1.5
        assert connection._backoff_delay(6) <= 5.0
