"""Tests for the listener registry."""
from medqueue.core.event_bus import EventBus


def test_dispatch_in_registration_order():
    bus = EventBus()
    calls = []
    bus.on("queueChanged", lambda data: calls.append(("first", data)))
    bus.on("queueChanged", lambda data: calls.append(("second", data)))

    assert bus.dispatch("queueChanged", {"queue": []}) == 2
    assert calls == [("first", {"queue": []}), ("second", {"queue": []})]


def test_dispose_detaches_only_that_listener():
    bus = EventBus()
    first, second = [], []
    subscription = bus.on("error", first.append)
    bus.on("error", second.append)

    subscription.dispose()
    subscription.dispose()
    bus.dispatch("error", "boom")

    assert first == []
    assert second == ["boom"]
    assert bus.listener_count("error") == 1


def test_once_fires_a_single_time():
    bus = EventBus()
    calls = []
    bus.once("connect", calls.append)
    bus.dispatch("connect")
    bus.dispatch("connect")
    assert calls == [None]
    assert bus.listener_count("connect") == 0


def test_subscription_as_context_manager():
    bus = EventBus()
    calls = []
    with bus.on("queueUpdate", calls.append):
        bus.dispatch("queueUpdate", 1)
    bus.dispatch("queueUpdate", 2)
    assert calls == [1]
    assert bus.listener_count() == 0


def test_failing_listener_does_not_stop_others():
    bus = EventBus()
    calls = []

    def broken(data):
        raise RuntimeError("listener bug")

    bus.on("queueChanged", broken)
    bus.on("queueChanged", calls.append)
    assert bus.dispatch("queueChanged", "snapshot") == 2
    assert calls == ["snapshot"]


def test_listener_disposed_during_dispatch_is_skipped():
    bus = EventBus()
    calls = []
    later = None

    def first(data):
        later.dispose()

    bus.on("queueChanged", first)
    later = bus.on("queueChanged", calls.append)
    assert bus.dispatch("queueChanged") == 1
    assert calls == []


def test_clear():
    bus = EventBus()
    subscription = bus.on("a", print)
    bus.on("b", print)
    bus.clear()
    assert bus.listener_count() == 0
    assert not subscription.active
    assert bus.dispatch("a") == 0
