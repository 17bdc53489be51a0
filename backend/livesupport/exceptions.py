"""
Error taxonomy for the support coordinator.

Every rejected intent is expressed as a SupportError subclass carrying a
stable machine-readable code. None of them is fatal: the event router turns
them into a single ``error`` event for the originating connection and the
REST layer maps them to HTTP status codes.
"""
from typing import Optional


class SupportError(Exception):
    """Base class for recoverable coordinator errors."""

    code = "support_error"
    http_status = 400

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_payload(self) -> dict:
        payload = {"message": self.message, "code": self.code}
        if self.session_id:
            payload["sessionId"] = self.session_id
        return payload


class NotFound(SupportError):
    """Unknown session or agent."""

    code = "not_found"
    http_status = 404


class InvalidTransition(SupportError):
    """Session status graph violation."""

    code = "invalid_transition"
    http_status = 409


class AlreadyAssigned(SupportError):
    """Lost a pickup race, or the session is no longer waiting."""

    code = "already_assigned"
    http_status = 409


class AlreadyQueued(SupportError):
    """Session already has a queue entry."""

    code = "already_queued"
    http_status = 409


class AgentUnavailable(SupportError):
    """Agent unknown, not available, or at capacity."""

    code = "agent_unavailable"
    http_status = 409


class NotOwner(SupportError):
    """Actor is not allowed to act on this session."""

    code = "not_owner"
    http_status = 403


class SessionClosed(SupportError):
    """Write attempted on a closed session."""

    code = "session_closed"
    http_status = 409


class InvalidIntent(SupportError):
    """Inbound intent is unknown or its payload failed validation."""

    code = "invalid_intent"
    http_status = 422


class CoordinatorBusy(SupportError):
    """The session lock could not be acquired in time."""

    code = "busy"
    http_status = 503


class InternalError(SupportError):
    """Unexpected failure while handling an intent."""

    code = "internal_error"
    http_status = 500


__all__ = [
    'SupportError',
    'NotFound',
    'InvalidTransition',
    'AlreadyAssigned',
    'AlreadyQueued',
    'AgentUnavailable',
    'NotOwner',
    'SessionClosed',
    'InvalidIntent',
    'CoordinatorBusy',
    'InternalError',
]
