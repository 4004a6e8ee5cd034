"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception.

    Every subclass carries a stable machine-readable ``code`` that the
    exception handler renders next to the human-readable message.
    """

    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
        code: str | None = None,
    ) -> None:
        if code:
            self.code = code
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    code = "VALIDATION_ERROR"

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")


class AuthenticationError(AppException):
    """Authentication failed exception."""

    code = "AUTHENTICATION_FAILED"

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Authorization denied exception."""

    code = "NOT_AUTHORIZED"

    def __init__(self, detail: str = "You don't have permission to access this resource") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class CSRFError(AppException):
    """Missing or mismatched CSRF token."""

    code = "CSRF_FAILED"

    def __init__(self, detail: str = "CSRF token missing or invalid") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    code = "RATE_LIMITED"

    def __init__(self, detail: str = "Too many requests. Please try again later.") -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": "60"},
        )


# ==================== BOOKING LIFECYCLE ====================


class BookingNotFound(NotFoundError):
    """No booking with the requested ID."""

    def __init__(self) -> None:
        super().__init__("Booking")


class NotAuthorized(AuthorizationError):
    """Actor has no standing for this action on this booking."""

    def __init__(self, detail: str = "You are not allowed to perform this action on this booking") -> None:
        super().__init__(detail)


class InvalidTransition(AppException):
    """Action is not valid from the booking's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, detail: str = "This action is not allowed for the current booking status") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class MissingRequiredField(AppException):
    """A field the action requires was not supplied."""

    code = "MISSING_REQUIRED_FIELD"

    def __init__(self, detail: str = "A required field is missing") -> None:
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=detail)


class BookingConflict(AppException):
    """Concurrent updates kept winning; the caller may retry."""

    code = "CONFLICT"

    def __init__(self, detail: str = "The booking was modified concurrently. Please retry.") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class TransitionTimeout(AppException):
    """The transition did not reach the store before the caller's deadline."""

    code = "TIMEOUT"

    def __init__(self, detail: str = "The booking update timed out. No changes were made.") -> None:
        super().__init__(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=detail)


class ReferenceGenerationError(AppException):
    """Could not allocate a unique booking reference number."""

    def __init__(self) -> None:
        super().__init__(detail="Could not allocate a booking reference. Please retry.")
