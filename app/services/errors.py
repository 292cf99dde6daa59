"""Typed failures raised by the time-tracking services.

All of them subclass ValueError, the exception type the HTTP layer already maps
to client errors, and carry a stable ``reason`` code next to the human message.
"""

from typing import Optional


class TimeTrackingError(ValueError):
    status_code = 400
    default_reason = "error"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason


class ValidationRejected(TimeTrackingError):
    """The input breaks a rule; the caller must change it."""

    status_code = 422
    default_reason = "invalid_input"


class StateConflict(TimeTrackingError):
    """The entry is not in a state that allows the operation."""

    status_code = 409
    default_reason = "state_conflict"


class NotFound(TimeTrackingError):
    status_code = 404
    default_reason = "not_found"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", reason="not_found")
        self.resource = resource
