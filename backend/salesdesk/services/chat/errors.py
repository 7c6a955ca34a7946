"""Typed failures raised by the chat engine.

Every domain error carries a stable ``kind`` (machine-checkable) and the HTTP
status it maps to. Infrastructure failures are ``StorageError`` and are kept
outside the ``ChatError`` hierarchy so callers can tell a broken business rule
from a broken database.
"""
from __future__ import annotations


class ChatError(Exception):
    kind = "chat_error"
    status_code = 400

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class Unauthenticated(ChatError):
    kind = "unauthenticated"
    status_code = 401


class Forbidden(ChatError):
    kind = "forbidden"
    status_code = 403


class NotFound(ChatError):
    kind = "not_found"
    status_code = 404


class SessionNotFound(NotFound):
    def __init__(self, session_id: str) -> None:
        super().__init__("Chat session not found")
        self.session_id = session_id


class InvalidInput(ChatError):
    kind = "invalid_input"
    status_code = 400


class InvalidTarget(InvalidInput):
    kind = "invalid_target"


class InvalidTransition(ChatError):
    kind = "invalid_transition"
    status_code = 409


class SessionClosed(InvalidTransition):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            "Cannot send messages to a resolved or closed chat. Please start a new chat."
        )
        self.session_id = session_id
        self.status = status


class ServiceUnavailable(ChatError):
    kind = "service_unavailable"
    status_code = 503


class StorageError(Exception):
    """The persistence layer failed (connectivity, constraint other than the id, ...)."""

    kind = "storage_error"
    status_code = 500


class DuplicateSessionError(Exception):
    """A session with the same id was inserted concurrently."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id
