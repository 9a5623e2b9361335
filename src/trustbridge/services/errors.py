"""Domain error hierarchy.

Services raise these; the FastAPI exception handler in ``app.main`` turns
them into ``{"error": message, "code": code}`` bodies with the matching
HTTP status. Services never raise ``HTTPException`` directly.
"""

from typing import Optional


class MarketplaceError(Exception):
    """Base class for every error with a machine-readable code."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[dict] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationError(MarketplaceError):
    """Malformed or missing input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthenticationError(MarketplaceError):
    """No session, or the bearer token is invalid."""

    status_code = 401
    default_code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(MarketplaceError):
    """Authenticated, but the wrong role or not the owner."""

    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(MarketplaceError):
    """State-machine violation or duplicate record."""

    status_code = 409
    default_code = "CONFLICT"


class PreconditionError(MarketplaceError):
    """The caller's own state is not ready for the operation."""

    status_code = 400
    default_code = "PRECONDITION_FAILED"


class InternalError(MarketplaceError):
    status_code = 500
    default_code = "INTERNAL_ERROR"


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed for the acting party."""

    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        current_status,
        target_status,
        reason: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {_value(current_status)} to {_value(target_status)}: {reason}",
            code=code,
            status_code=status_code,
        )


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)
