"""Core utilities and security modules."""

from app.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    BookingConflict,
    BookingNotFound,
    CSRFError,
    InvalidTransition,
    MissingRequiredField,
    NotAuthorized,
    NotFoundError,
    RateLimitExceeded,
    TransitionTimeout,
    ValidationError,
)
from app.core.security import create_access_token, verify_token

__all__ = [
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "BookingConflict",
    "BookingNotFound",
    "CSRFError",
    "InvalidTransition",
    "MissingRequiredField",
    "NotAuthorized",
    "NotFoundError",
    "RateLimitExceeded",
    "TransitionTimeout",
    "ValidationError",
    "create_access_token",
    "verify_token",
]
