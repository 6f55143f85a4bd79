"""
Errors raised by the lifecycle engine.

A refused transition is NOT a crash - it is the engine working correctly. Every
refusal leaves the ticket and its audit journal untouched.
"""
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for every error the engine surfaces to callers."""

    error_code: str = "LIFECYCLE_ERROR"
    http_status: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class UnauthorizedTransition(LifecycleError):
    """The actor's capabilities do not satisfy the guard for the requested event."""
    error_code = "UNAUTHORIZED_TRANSITION"
    http_status = 403


class InvalidStateForEvent(LifecycleError):
    """The requested event is not defined for the ticket's current status."""
    error_code = "INVALID_STATE_FOR_EVENT"
    http_status = 409


class ValidationFailure(LifecycleError):
    """The payload breaks a business rule; the caller must resubmit a corrected one."""
    error_code = "VALIDATION_FAILURE"
    http_status = 422


class NotFound(LifecycleError):
    """The ticket (or project) id does not resolve."""
    error_code = "NOT_FOUND"
    http_status = 404


class StoreUnavailable(LifecycleError):
    """Persistence failed; nothing from the attempted change was applied."""
    error_code = "STORE_UNAVAILABLE"
    http_status = 503
