"""Booking-related Pydantic schemas."""

from datetime import date as date_type
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.domain.booking_state import BookingAction, BookingEntityType, BookingStatus


class BookingCreate(BaseModel):
    """Schema for creating a booking."""

    entity_type: BookingEntityType
    entity_id: UUID
    provider_user_id: UUID
    date: date_type | None = None
    guests: int = Field(default=1, ge=1, le=100)
    notes: str | None = Field(None, max_length=2000)
    contact_phone: str | None = Field(None, max_length=30)
    contact_email: EmailStr | None = None
    total_price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class BookingConfirmRequest(BaseModel):
    """Schema for a provider confirming a booking."""

    provider_notes: str | None = Field(None, max_length=1000)


class BookingDeclineRequest(BaseModel):
    """Schema for a provider declining a booking.

    The reason is checked by the transition guard, so an empty or missing
    value yields MISSING_REQUIRED_FIELD rather than a generic validation error.
    """

    declined_reason: str | None = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    """Schema for booking response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference_number: str
    entity_type: BookingEntityType
    entity_id: UUID
    user_id: UUID
    provider_user_id: UUID

    # Status
    status: BookingStatus
    version: int

    # Request details
    date: date_type | None
    guests: int
    total_price: Decimal
    currency: str
    contact_phone: str | None
    contact_email: str | None
    notes: str | None

    # Transition details
    provider_notes: str | None
    declined_reason: str | None
    cancelled_by: str | None

    # Timestamps
    created_at: datetime
    updated_at: datetime
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    declined_at: datetime | None


class BookingListResponse(BaseModel):
    """Schema for paginated booking list."""

    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int


class BookingActionsResponse(BaseModel):
    """Actions the current user may take on a booking right now."""

    booking_id: UUID
    status: BookingStatus
    allowed_actions: list[BookingAction]


class ErrorResponse(BaseModel):
    """Error body returned for every failed request."""

    code: str
    message: str
