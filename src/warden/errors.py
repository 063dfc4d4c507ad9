"""Error taxonomy shared by services, dependencies and routes.

Learn: Services raise these instead of HTTPException so the same code
works from the CLI and from tests. One exception handler in main.py
turns them into JSON responses:

    {"detail": "<message>", "error": "<code>", "field_errors": {...}}

Authentication and authorization failures always carry a generic
message. The internal reason (unknown vs revoked vs expired) only goes
to the structured log, never to the caller.
"""

from typing import Optional


class WardenError(Exception):
    """Base class — carries an HTTP status and a stable machine code."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        field_errors: Optional[dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.field_errors = field_errors or {}
        super().__init__(self.message)

    def headers(self) -> dict[str, str]:
        return {}

    def to_dict(self) -> dict:
        body: dict = {"detail": self.message, "error": self.code}
        if self.field_errors:
            body["field_errors"] = self.field_errors
        return body


class AuthenticationFailure(WardenError):
    """Missing, malformed, expired, revoked or unknown credential."""

    status_code = 401
    code = "authentication_failed"
    default_message = "Authentication required"

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class AuthorizationFailure(WardenError):
    """Valid identity, insufficient tier or ownership."""

    status_code = 403
    code = "authorization_failed"
    default_message = "You do not have permission to perform this action"


class ValidationFailure(WardenError):
    status_code = 422
    code = "validation_failed"
    default_message = "Invalid input"


class ConflictFailure(WardenError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class NotFound(WardenError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class DependencyFailure(WardenError):
    """Database or object storage unavailable. Always retryable."""

    status_code = 503
    code = "dependency_unavailable"
    default_message = "Service temporarily unavailable, please try again later"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 5):
        super().__init__(message)
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}
