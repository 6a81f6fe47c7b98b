"""Error taxonomy for the MedQueue client."""
from typing import Optional


class QueueClientError(Exception):
    """Base class for client errors surfaced to callers."""


class ConnectivityError(QueueClientError):
    """The event channel is not connected."""


class RoomNotJoinedError(QueueClientError):
    """A doctor command was attempted before the room join was acknowledged."""


class CommandRejectedError(QueueClientError):
    """The server explicitly rejected a correlated command."""

    def __init__(self, message: str, response: Optional[dict] = None):
        super().__init__(message)
        self.response = response or {}


class CommandTimeoutError(QueueClientError):
    """A correlated command was never acknowledged."""


class ApiError(QueueClientError):
    """HTTP failure or malformed response body."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
