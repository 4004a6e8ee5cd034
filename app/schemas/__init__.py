"""Pydantic schemas for API validation."""

from app.schemas.booking import (
    BookingActionsResponse,
    BookingConfirmRequest,
    BookingCreate,
    BookingDeclineRequest,
    BookingListResponse,
    BookingResponse,
    ErrorResponse,
)

__all__ = [
    # Booking
    "BookingCreate",
    "BookingConfirmRequest",
    "BookingDeclineRequest",
    "BookingResponse",
    "BookingListResponse",
    "BookingActionsResponse",
    # Errors
    "ErrorResponse",
]
