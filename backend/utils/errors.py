"""
Application error taxonomy.

Every error the API reports before a stream opens is an AppError subclass.
main.py renders them as the JSON envelope:

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}

Errors that happen after a stream has opened never reach the HTTP layer;
the relay turns them into a terminal ``error`` frame instead.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for operational errors with an HTTP status and stable code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        """Build the ``error`` object of the response envelope."""
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return error


class ValidationFailed(AppError):
    """Request shape or length is wrong. Raised before any side effect."""
    status_code = 422
    code = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    """Missing, invalid or expired credentials."""
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    """Authenticated identity does not own the resource."""
    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(Exception):
    """The completion provider failed (HTTP error, dropped connection, bad stream).

    Only ever surfaced to the client as an in-stream ``error`` frame.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportAbort(Exception):
    """The client disconnected while a turn was still streaming."""
