"""Booking database model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from datetime import date as date_type
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.domain.booking_state import BookingStatus


def utcnow() -> datetime:
    return datetime.now(UTC)


class Booking(Base):
    """Reservation between a customer and a tour, guide or driver provider.

    Rows are never deleted. ``status`` and the lifecycle timestamps only
    change through ``BookingRepository.apply_transition``.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("user_id <> provider_user_id", name="ck_bookings_distinct_parties"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'DECLINED', 'CANCELLED', 'COMPLETED')",
            name="ck_bookings_status",
        ),
        Index("ix_bookings_status_created_at", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )  # BK-YYMMDD-XXXX

    # What is booked
    entity_type: Mapped[str] = mapped_column(String(10), nullable=False)  # TOUR, GUIDE, DRIVER
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Parties
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    provider_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Request details
    date: Mapped[date_type | None] = mapped_column(Date)
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GEL")
    contact_phone: Mapped[str | None] = mapped_column(String(30))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    # Set by transitions
    provider_notes: Mapped[str | None] = mapped_column(Text)  # confirm only
    declined_reason: Mapped[str | None] = mapped_column(Text)  # decline only
    cancelled_by: Mapped[str | None] = mapped_column(String(10))  # customer

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            BookingStatus.COMPLETED.value,
            BookingStatus.CANCELLED.value,
            BookingStatus.DECLINED.value,
        )
