"""Booking lifecycle service.

``perform_action`` is the only way a booking's status changes:

1. load the booking (``BookingNotFound``)
2. resolve the actor's role on it (``NotAuthorized`` if neither party)
3. ask the transition guard (rejections surface unchanged)
4. compare-and-swap in the store; on a version conflict start again
   from step 1, at most ``max_attempts`` times, then ``BookingConflict``
5. commit, then hand one event to the dispatcher without waiting for it
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from datetime import date as date_type
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    AppException,
    BookingConflict,
    BookingNotFound,
    InvalidTransition,
    MissingRequiredField,
    NotAuthorized,
    ReferenceGenerationError,
    TransitionTimeout,
    ValidationError,
)
from app.domain.booking_state import (
    ActorRole,
    BookingAction,
    BookingEntityType,
    BookingStatus,
    Rejection,
    RejectionCode,
    allowed_actions,
    decide,
)
from app.models.booking import Booking
from app.repositories.booking_repository import (
    BookingRepository,
    VersionConflict,
    booking_repository,
)
from app.services.booking_events import (
    CREATE_ACTION,
    BookingEvent,
    BookingEventDispatcher,
)
from app.utils.booking_number import MAX_REFERENCE_ATTEMPTS, generate_unique_reference_number

logger = logging.getLogger(__name__)

AUTO_DECLINE_REASON = "Expired - provider did not respond in time"

_REJECTION_ERRORS: dict[RejectionCode, type[AppException]] = {
    RejectionCode.INVALID_TRANSITION: InvalidTransition,
    RejectionCode.NOT_AUTHORIZED: NotAuthorized,
    RejectionCode.MISSING_REQUIRED_FIELD: MissingRequiredField,
}


@dataclass
class BookingDraft:
    """Customer input for a new booking."""

    entity_type: BookingEntityType
    entity_id: UUID
    provider_user_id: UUID
    date: date_type | None = None
    guests: int = 1
    notes: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    total_price: Decimal = Decimal("0")
    currency: str | None = None


def resolve_actor_role(booking: Booking, actor_user_id: UUID) -> ActorRole | None:
    """The actor's role on this booking, or None if they are not a party to it."""
    if actor_user_id == booking.user_id:
        return ActorRole.CUSTOMER
    if actor_user_id == booking.provider_user_id:
        return ActorRole.PROVIDER
    return None


def rejection_error(rejection: Rejection) -> AppException:
    return _REJECTION_ERRORS[rejection.code](rejection.message)


class BookingService:
    """Orchestrates booking creation and guarded transitions."""

    def __init__(
        self,
        repository: BookingRepository | None = None,
        dispatcher: BookingEventDispatcher | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.repository = repository or booking_repository
        self.dispatcher = dispatcher or BookingEventDispatcher()
        self.max_attempts = max_attempts or settings.booking_transition_max_retries

    # ==================== CREATE / READ ====================

    async def create_booking(
        self,
        db: AsyncSession,
        customer_id: UUID,
        draft: BookingDraft,
    ) -> Booking:
        """Create a PENDING booking on behalf of ``customer_id``."""
        if draft.provider_user_id == customer_id:
            raise ValidationError("You cannot book your own service")

        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            reference_number = await generate_unique_reference_number(db)
            try:
                booking = await self.repository.create(
                    db,
                    reference_number=reference_number,
                    entity_type=BookingEntityType(draft.entity_type).value,
                    entity_id=draft.entity_id,
                    user_id=customer_id,
                    provider_user_id=draft.provider_user_id,
                    date=draft.date,
                    guests=draft.guests,
                    notes=draft.notes,
                    contact_phone=draft.contact_phone,
                    contact_email=draft.contact_email,
                    total_price=draft.total_price,
                    currency=draft.currency or settings.default_currency,
                )
            except IntegrityError:
                await db.rollback()
                if not await self.repository.reference_number_exists(db, reference_number):
                    raise
                logger.warning(
                    f"Reference {reference_number} was taken concurrently "
                    f"(attempt {attempt}/{MAX_REFERENCE_ATTEMPTS})"
                )
                continue
            break
        else:
            raise ReferenceGenerationError()
        await db.commit()

        logger.info(
            f"Booking {booking.reference_number} created by {customer_id} "
            f"for {booking.entity_type} {booking.entity_id}"
        )
        self.dispatcher.dispatch(
            BookingEvent.from_booking(
                booking,
                action=CREATE_ACTION,
                previous_status=None,
                actor_user_id=customer_id,
                timestamp=booking.created_at,
            )
        )
        return booking

    async def get_booking_for_actor(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_user_id: UUID,
        is_admin: bool = False,
    ) -> Booking:
        """Load a booking readable by either party or an admin."""
        booking = await self.repository.get(db, booking_id)
        if booking is None:
            raise BookingNotFound()
        if not is_admin and resolve_actor_role(booking, actor_user_id) is None:
            raise NotAuthorized("You don't have permission to view this booking")
        return booking

    async def get_allowed_actions(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_user_id: UUID,
    ) -> tuple[Booking, list[BookingAction]]:
        """Actions the actor could take now; advisory, never enforced here."""
        booking = await self.repository.get(db, booking_id)
        if booking is None:
            raise BookingNotFound()
        role = resolve_actor_role(booking, actor_user_id)
        if role is None:
            raise NotAuthorized("You don't have permission to view this booking")
        return booking, allowed_actions(booking.status, role)

    # ==================== TRANSITIONS ====================

    async def perform_action(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_user_id: UUID,
        action: BookingAction | str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Booking:
        """Apply a guarded transition on behalf of a booking party.

        Args:
            db: Database session (committed on success)
            booking_id: Booking to act on
            actor_user_id: Authenticated user performing the action
            action: confirm, decline, cancel or complete
            payload: Action input (provider_notes, declined_reason)
            timeout: Seconds allowed before the write; None waits indefinitely

        Returns:
            The updated booking

        Raises:
            BookingNotFound, NotAuthorized, InvalidTransition,
            MissingRequiredField, BookingConflict, TransitionTimeout
        """
        return await self._run_transition(
            db,
            booking_id,
            BookingAction(action),
            payload or {},
            actor_user_id=actor_user_id,
            timeout=timeout,
        )

    async def confirm(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_user_id: UUID,
        provider_notes: str | None = None,
    ) -> Booking:
        return await self.perform_action(
            db, booking_id, actor_user_id, BookingAction.CONFIRM, {"provider_notes": provider_notes}
        )

    async def decline(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_user_id: UUID,
        declined_reason: str | None,
    ) -> Booking:
        return await self.perform_action(
            db, booking_id, actor_user_id, BookingAction.DECLINE, {"declined_reason": declined_reason}
        )

    async def cancel(self, db: AsyncSession, booking_id: UUID, actor_user_id: UUID) -> Booking:
        return await self.perform_action(db, booking_id, actor_user_id, BookingAction.CANCEL)

    async def complete(self, db: AsyncSession, booking_id: UUID, actor_user_id: UUID) -> Booking:
        return await self.perform_action(db, booking_id, actor_user_id, BookingAction.COMPLETE)

    async def expire_stale_bookings(
        self,
        db: AsyncSession,
        now: datetime | None = None,
    ) -> list[Booking]:
        """Decline PENDING bookings the provider left unanswered too long.

        Bookings that move on while the job runs are skipped.
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(hours=settings.booking_expiration_hours)
        candidates = await self.repository.find_expired_pending(db, cutoff)
        candidate_ids = [booking.id for booking in candidates]
        await db.commit()

        if candidate_ids:
            logger.info(f"Found {len(candidate_ids)} expired PENDING bookings to auto-decline")

        declined = []
        for booking_id in candidate_ids:
            try:
                booking = await self._run_transition(
                    db,
                    booking_id,
                    BookingAction.DECLINE,
                    {"declined_reason": AUTO_DECLINE_REASON},
                    system=True,
                )
            except (InvalidTransition, BookingConflict, BookingNotFound) as e:
                logger.info(f"Skipped expiring booking {booking_id}: {e.detail}")
                continue
            logger.info(f"Auto-declined expired booking {booking.reference_number}")
            declined.append(booking)
        return declined

    async def _run_transition(
        self,
        db: AsyncSession,
        booking_id: UUID,
        action: BookingAction,
        payload: dict[str, Any],
        actor_user_id: UUID | None = None,
        system: bool = False,
        timeout: float | None = None,
    ) -> Booking:
        try:
            async with asyncio.timeout(timeout):
                booking, previous_status, now = await self._attempt_until_applied(
                    db, booking_id, action, payload, actor_user_id, system
                )
        except TimeoutError:
            await db.rollback()
            logger.warning(f"{action.value} on booking {booking_id} timed out before commit")
            raise TransitionTimeout()
        except Exception:
            await db.rollback()
            raise

        await db.commit()
        logger.info(
            f"Booking {booking.reference_number} {previous_status} -> {booking.status} "
            f"({action.value} by {actor_user_id or 'system'})"
        )

        self.dispatcher.dispatch(
            BookingEvent.from_booking(
                booking,
                action=action.value,
                previous_status=previous_status,
                actor_user_id=actor_user_id,
                timestamp=now,
            )
        )
        return booking

    async def _attempt_until_applied(
        self,
        db: AsyncSession,
        booking_id: UUID,
        action: BookingAction,
        payload: dict[str, Any],
        actor_user_id: UUID | None,
        system: bool,
    ) -> tuple[Booking, str, datetime]:
        for attempt in range(1, self.max_attempts + 1):
            booking = await self.repository.get(db, booking_id)
            if booking is None:
                raise BookingNotFound()

            if system:
                role = ActorRole.SYSTEM
            else:
                role = resolve_actor_role(booking, actor_user_id)
                if role is None:
                    raise NotAuthorized()

            outcome = decide(
                booking.status,
                action,
                role,
                declined_reason=payload.get("declined_reason"),
            )
            if isinstance(outcome, Rejection):
                raise rejection_error(outcome)

            previous_status = booking.status
            now = datetime.now(UTC)
            result = await self.repository.apply_transition(
                db,
                booking_id,
                expected_status=BookingStatus(previous_status),
                next_status=outcome.next_status,
                timestamp_field=outcome.timestamp_field,
                extra_fields=self._transition_fields(action, role, payload),
                now=now,
            )
            if isinstance(result, VersionConflict):
                logger.info(
                    f"Retrying {action.value} on booking {booking_id} "
                    f"after version conflict (attempt {attempt}/{self.max_attempts})"
                )
                continue
            return result, previous_status, now

        logger.warning(
            f"Giving up {action.value} on booking {booking_id} after {self.max_attempts} conflicts"
        )
        raise BookingConflict()

    @staticmethod
    def _transition_fields(
        action: BookingAction,
        role: ActorRole,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        if action is BookingAction.CONFIRM:
            notes = payload.get("provider_notes")
            return {"provider_notes": notes.strip()} if notes and notes.strip() else {}
        if action is BookingAction.DECLINE:
            return {"declined_reason": payload["declined_reason"].strip()}
        if action is BookingAction.CANCEL:
            return {"cancelled_by": role.value}
        return {}


def _default_dispatcher() -> BookingEventDispatcher:
    from app.services.audit_service import audit_service
    from app.services.notification_service import notification_service

    return BookingEventDispatcher(sinks=[audit_service, notification_service])


booking_service = BookingService(dispatcher=_default_dispatcher())
