"""Tests for user-visible notifications."""
from medqueue.core.message_system import (
    NotificationCategory, NotificationCenter, NotificationLevel
)


def test_notify_records_and_forwards():
    center = NotificationCenter()
    received = []
    center.add_listener(received.append)

    notification = center.warning("Connection Issue", "Retrying",
                                  category=NotificationCategory.CONNECTION)

    assert received == [notification]
    assert center.get_all() == [notification]
    assert notification.level is NotificationLevel.WARNING
    assert notification.format_for_log() == "[connection] Connection Issue: Retrying"


def test_filters():
    center = NotificationCenter()
    center.info("Queue Update", category=NotificationCategory.QUEUE)
    center.error("Connection Failed", category=NotificationCategory.CONNECTION)
    center.info("Time's Up!", category=NotificationCategory.TIMER)

    assert [n.title for n in center.get_by_category(NotificationCategory.CONNECTION)] == \
        ["Connection Failed"]
    assert [n.title for n in center.get_by_level(NotificationLevel.INFO)] == \
        ["Queue Update", "Time's Up!"]
    assert center.titles() == ["Queue Update", "Connection Failed", "Time's Up!"]


def test_removed_listener_is_not_called():
    center = NotificationCenter()
    received = []
    remove = center.add_listener(received.append)
    remove()
    remove()
    center.info("Reconnected")
    assert received == []


def test_failing_listener_is_isolated():
    center = NotificationCenter()
    received = []

    def broken(notification):
        raise RuntimeError("ui gone")

    center.add_listener(broken)
    center.add_listener(received.append)
    center.error("Error", "Failed to remove patient")
    assert [n.title for n in received] == ["Error"]


def test_buffer_is_bounded_and_clearable():
    center = NotificationCenter(max_size=2)
    for n in range(3):
        center.info(f"Notice {n}")
    assert center.titles() == ["Notice 1", "Notice 2"]
    center.clear()
    assert center.get_all() == []
