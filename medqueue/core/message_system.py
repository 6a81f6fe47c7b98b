"""Notification system for the MedQueue client.

User-visible notices (connection warnings, consultation updates, command failures) are
recorded as structured messages in bounded buffers, logged, and forwarded to any
registered listener such as a UI.
"""
import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    """Notification severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class NotificationCategory(Enum):
    """Notification category types."""
    CONNECTION = "connection"
    QUEUE = "queue"
    CONSULTATION = "consultation"
    COMMAND = "command"
    TIMER = "timer"


_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


@dataclass
class Notification:
    """Structured user-visible notice."""
    title: str
    content: str = ""
    level: NotificationLevel = NotificationLevel.INFO
    category: NotificationCategory = NotificationCategory.QUEUE
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def formatted_timestamp(self) -> str:
        """Get formatted timestamp string."""
        return time.strftime("%H:%M:%S", time.localtime(self.timestamp))

    def format_for_log(self) -> str:
        return f"[{self.category.value}] {self.title}: {self.content}"


class NotificationBuffer:
    """Thread-safe bounded buffer of notifications."""
    def __init__(self, max_size: int = 200):
        self.buffer = deque(maxlen=max_size)
        self.lock = threading.RLock()

    def add(self, notification: Notification) -> None:
        with self.lock:
            self.buffer.append(notification)

    def get_all(self) -> List[Notification]:
        with self.lock:
            return list(self.buffer)

    def get_by_category(self, category: NotificationCategory) -> List[Notification]:
        with self.lock:
            return [n for n in self.buffer if n.category == category]

    def get_by_level(self, level: NotificationLevel) -> List[Notification]:
        with self.lock:
            return [n for n in self.buffer if n.level == level]

    def clear(self) -> None:
        with self.lock:
            self.buffer.clear()


Listener = Callable[[Notification], None]


class NotificationCenter:
    """Collects notifications for one application instance."""

    def __init__(self, max_size: int = 200):
        self.buffer = NotificationBuffer(max_size)
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def notify(self,
               title: str,
               content: str = "",
               level: NotificationLevel = NotificationLevel.INFO,
               category: NotificationCategory = NotificationCategory.QUEUE,
               metadata: Optional[Dict[str, Any]] = None) -> Notification:
        """
        Record a notification and forward it to listeners.
        Returns the created notification.
        """
        notification = Notification(
            title=title,
            content=content,
            level=level,
            category=category,
            metadata=metadata or {}
        )
        self.buffer.add(notification)
        logger.log(_LOG_LEVELS[level], notification.format_for_log())

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}", exc_info=True)
        return notification

    def info(self, title: str, content: str = "", **kwargs) -> Notification:
        return self.notify(title, content, NotificationLevel.INFO, **kwargs)

    def warning(self, title: str, content: str = "", **kwargs) -> Notification:
        return self.notify(title, content, NotificationLevel.WARNING, **kwargs)

    def error(self, title: str, content: str = "", **kwargs) -> Notification:
        return self.notify(title, content, NotificationLevel.ERROR, **kwargs)

    def get_all(self) -> List[Notification]:
        return self.buffer.get_all()

    def get_by_category(self, category: NotificationCategory) -> List[Notification]:
        return self.buffer.get_by_category(category)

    def get_by_level(self, level: NotificationLevel) -> List[Notification]:
        return self.buffer.get_by_level(level)

    def titles(self) -> List[str]:
        return [n.title for n in self.buffer.get_all()]

    def clear(self) -> None:
        self.buffer.clear()
