"""
Utility modules package.
"""

from utils.errors import (
    AppError,
    ValidationFailed,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    RateLimitError,
    ProviderError,
    TransportAbort,
)
from utils.validators import (
    validate_username,
    validate_password,
    validate_message_content,
    validate_model,
)

__all__ = [
    "AppError",
    "ValidationFailed",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RateLimitError",
    "ProviderError",
    "TransportAbort",
    "validate_username",
    "validate_password",
    "validate_message_content",
    "validate_model",
]
