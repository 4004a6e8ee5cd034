"""Booking persistence with compare-and-swap status transitions."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BookingNotFound
from app.domain.booking_state import BookingEntityType, BookingStatus
from app.models.booking import Booking

logger = logging.getLogger(__name__)

# Columns a transition is allowed to write besides status/timestamp/version
TRANSITION_FIELDS = frozenset({"provider_notes", "declined_reason", "cancelled_by"})
TIMESTAMP_FIELDS = frozenset({"confirmed_at", "declined_at", "cancelled_at", "completed_at"})


@dataclass(frozen=True)
class VersionConflict:
    """The booking was no longer in the expected status at write time."""

    booking_id: UUID
    expected_status: BookingStatus


class BookingRepository:
    """Store for booking records.

    All methods take the caller's session; none of them commit.
    """

    async def create(self, db: AsyncSession, **fields: Any) -> Booking:
        """Insert a new booking in PENDING status."""
        booking = Booking(status=BookingStatus.PENDING.value, **fields)
        db.add(booking)
        await db.flush()
        return booking

    async def get(self, db: AsyncSession, booking_id: UUID) -> Booking | None:
        """Load a booking, always refreshing from the database."""
        result = await db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reference_number_exists(self, db: AsyncSession, reference_number: str) -> bool:
        result = await db.execute(
            select(Booking.id).where(Booking.reference_number == reference_number)
        )
        return result.scalar_one_or_none() is not None

    async def apply_transition(
        self,
        db: AsyncSession,
        booking_id: UUID,
        expected_status: BookingStatus,
        next_status: BookingStatus,
        timestamp_field: str,
        extra_fields: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Booking | VersionConflict:
        """Move a booking from ``expected_status`` to ``next_status`` atomically.

        Issues a single ``UPDATE ... WHERE id = :id AND status = :expected``
        that also writes the lifecycle timestamp, bumps ``version`` and sets
        any extra fields, so none of them can be observed out of step with
        ``status``.

        Args:
            db: Database session
            booking_id: Booking to update
            expected_status: Status the caller read before deciding
            next_status: Status decided by the transition guard
            timestamp_field: Lifecycle timestamp column to stamp
            extra_fields: Additional transition columns (notes, reason)
            now: Timestamp to write, defaults to current UTC time

        Returns:
            The updated booking, or VersionConflict if the status moved

        Raises:
            BookingNotFound: If no booking has this ID
        """
        if timestamp_field not in TIMESTAMP_FIELDS:
            raise ValueError(f"Unknown lifecycle timestamp: {timestamp_field}")
        extra_fields = extra_fields or {}
        unknown = set(extra_fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable by a transition: {sorted(unknown)}")

        now = now or datetime.now(UTC)
        values: dict[str, Any] = {
            "status": BookingStatus(next_status).value,
            timestamp_field: now,
            "updated_at": now,
            "version": Booking.version + 1,
            **extra_fields,
        }
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == BookingStatus(expected_status).value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            exists = await db.execute(select(Booking.id).where(Booking.id == booking_id))
            if exists.scalar_one_or_none() is None:
                raise BookingNotFound()
            logger.info(
                f"Version conflict on booking {booking_id}: expected {BookingStatus(expected_status).value}"
            )
            return VersionConflict(booking_id=booking_id, expected_status=BookingStatus(expected_status))

        booking = await self.get(db, booking_id)
        assert booking is not None
        return booking

    async def list_for_customer(
        self,
        db: AsyncSession,
        user_id: UUID,
        page: int = 1,
        page_size: int = 20,
        status: BookingStatus | None = None,
        entity_type: BookingEntityType | None = None,
    ) -> tuple[list[Booking], int]:
        """Bookings made by a customer, newest first."""
        query = select(Booking).where(Booking.user_id == user_id)
        return await self._paginate(db, query, page, page_size, status, entity_type)

    async def list_for_provider(
        self,
        db: AsyncSession,
        provider_user_id: UUID,
        page: int = 1,
        page_size: int = 20,
        status: BookingStatus | None = None,
        entity_type: BookingEntityType | None = None,
    ) -> tuple[list[Booking], int]:
        """Bookings received by a provider, newest first."""
        query = select(Booking).where(Booking.provider_user_id == provider_user_id)
        return await self._paginate(db, query, page, page_size, status, entity_type)

    async def find_expired_pending(self, db: AsyncSession, cutoff: datetime) -> list[Booking]:
        """PENDING bookings created before ``cutoff``."""
        result = await db.execute(
            select(Booking)
            .where(
                Booking.status == BookingStatus.PENDING.value,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at)
        )
        return list(result.scalars().all())

    async def _paginate(
        self,
        db: AsyncSession,
        query,
        page: int,
        page_size: int,
        status: BookingStatus | None,
        entity_type: BookingEntityType | None,
    ) -> tuple[list[Booking], int]:
        if status:
            query = query.where(Booking.status == BookingStatus(status).value)
        if entity_type:
            query = query.where(Booking.entity_type == BookingEntityType(entity_type).value)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        result = await db.execute(
            query.order_by(Booking.created_at.desc()).offset(offset).limit(page_size)
        )
        return list(result.scalars().all()), total


booking_repository = BookingRepository()
