"""Error taxonomy shared by the scheduling engine, the store and the HTTP layer"""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class; carries the HTTP status the API layer renders it with"""

    status_code = 500
    code = "scheduling_error"
    retriable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.details}


class NotFound(SchedulingError):
    status_code = 404
    code = "not_found"


class PolicyViolation(SchedulingError):
    """Expected business refusal: cancellation window, illegal transition, wrong payment state"""

    status_code = 400
    code = "policy_violation"


class Conflict(SchedulingError):
    """Target slot is already occupied"""

    status_code = 409
    code = "conflict"


class Unauthorized(SchedulingError):
    """Caller is not a party to the appointment"""

    status_code = 403
    code = "unauthorized"


class UpstreamUnavailable(SchedulingError):
    """Document store or notification channel failure; callers may retry"""

    status_code = 503
    code = "upstream_unavailable"
    retriable = True
