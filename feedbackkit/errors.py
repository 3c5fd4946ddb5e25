"""
Service-layer error taxonomy.

Every error raised by feedbackkit.services derives from ServiceError and maps to
one HTTP status; the app factory registers a single handler that renders
{"error": <name>, "code": <status>, "reason": <message>} for all of them.
"""
from typing import Any, Dict, Optional


class ServiceError(RuntimeError):
    """Recoverable service error (validation/uniqueness/etc.)."""

    status_code = 500
    error = "server_error"

    def __init__(self, reason: str = "", **extra: Any):
        super().__init__(reason)
        self.reason = reason
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.error, "code": self.status_code, "reason": self.reason}
        payload.update(self.extra)
        return payload


class ValidationError(ServiceError):
    status_code = 400
    error = "validation_error"

    def __init__(self, reason: str, field: Optional[str] = None):
        if field:
            super().__init__(reason, field=field)
        else:
            super().__init__(reason)
        self.field = field


class Unauthorized(ServiceError):
    status_code = 401
    error = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    error = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    error = "not_found"


class Conflict(ServiceError):
    status_code = 409
    error = "conflict"


class PaymentRequired(ServiceError):
    """Quota ceiling hit; carries the limit that was exceeded."""

    status_code = 402
    error = "payment_required"

    def __init__(self, reason: str, *, current_tier: str, required_tier: str,
                 limit: Optional[int] = None, current: Optional[int] = None):
        super().__init__(
            reason,
            current_tier=current_tier,
            required_tier=required_tier,
            limit=limit,
            current=current,
        )
        self.current_tier = current_tier
        self.required_tier = required_tier
        self.limit = limit
        self.current = current
