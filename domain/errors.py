from __future__ import annotations

from typing import Optional


class SessionError(Exception):
    """Base class for every error raised by the live-session subsystem."""


class StateError(SessionError):
    """A command is not valid for the session's current phase."""


class ValidationError(SessionError):
    """
    Malformed input, typically a stake configuration.

    `field` names the offending attribute so callers can point the user at it.
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(SessionError):
    """An unknown parked-session key, session id or stake id."""


class PersistenceError(SessionError):
    """
    The storage gateway failed to read or write.

    Never fatal to in-memory state: the lifecycle manager keeps the
    transition and queues the write for a later retry.
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
