import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import (
    BookingConflict,
    BookingNotFound,
    InvalidTransition,
    MissingRequiredField,
    NotAuthorized,
    ReferenceGenerationError,
    TransitionTimeout,
    ValidationError,
)
from app.domain.booking_state import BookingAction, BookingStatus
from app.repositories.booking_repository import BookingRepository, VersionConflict
from app.services import booking_service as booking_service_module
from app.services.booking_service import AUTO_DECLINE_REASON, BookingService


class ConflictingRepository(BookingRepository):
    """Reports a version conflict for the first ``conflicts`` writes."""

    def __init__(self, conflicts: int) -> None:
        self.conflicts = conflicts
        self.writes = 0

    async def apply_transition(self, db, booking_id, expected_status, *args, **kwargs):
        self.writes += 1
        if self.writes <= self.conflicts:
            return VersionConflict(booking_id=booking_id, expected_status=expected_status)
        return await super().apply_transition(db, booking_id, expected_status, *args, **kwargs)


class RacingRepository(BookingRepository):
    """Lets two transitions both read the booking before either writes.

    The first writer goes straight through; later writers wait until
    ``writer_done`` is set so SQLite never sees two open write transactions.
    """

    def __init__(self) -> None:
        self.reads = 0
        self.writes = 0
        self.both_read = asyncio.Barrier(2)
        self.writer_done = asyncio.Event()

    async def get(self, db, booking_id):
        booking = await super().get(db, booking_id)
        self.reads += 1
        if self.reads <= 2:
            await self.both_read.wait()
        return booking

    async def apply_transition(self, *args, **kwargs):
        self.writes += 1
        if self.writes > 1:
            await self.writer_done.wait()
        return await super().apply_transition(*args, **kwargs)


class SlowRepository(BookingRepository):
    async def get(self, db, booking_id):
        await asyncio.sleep(1)
        return await super().get(db, booking_id)


# ==================== CREATE ====================


async def test_create_booking(service, db, customer_id, provider_id, draft, sink):
    booking = await service.create_booking(db, customer_id, draft)
    await service.dispatcher.drain()

    assert booking.status == "PENDING"
    assert booking.user_id == customer_id
    assert booking.provider_user_id == provider_id
    assert booking.reference_number.startswith("BK-")
    assert booking.currency == "GEL"
    assert booking.total_price == Decimal("0")

    [event] = sink.events
    assert event.action == "create"
    assert event.previous_status is None
    assert event.next_status == "PENDING"
    assert event.actor_user_id == customer_id


async def test_create_booking_rejects_self_booking(service, db, provider_id, draft):
    with pytest.raises(ValidationError):
        await service.create_booking(db, provider_id, draft)


async def test_create_regenerates_reference_taken_concurrently(service, db, customer_id, draft, monkeypatch):
    existing = await service.create_booking(db, customer_id, draft)
    candidates = iter([existing.reference_number, "BK-261120-ZZZZ"])

    async def racing_reference(session):
        return next(candidates)

    monkeypatch.setattr(booking_service_module, "generate_unique_reference_number", racing_reference)

    booking = await service.create_booking(db, customer_id, draft)
    await service.dispatcher.drain()

    assert booking.reference_number == "BK-261120-ZZZZ"
    assert booking.status == "PENDING"


async def test_create_gives_up_when_every_reference_collides(service, db, customer_id, draft, sink, monkeypatch):
    existing = await service.create_booking(db, customer_id, draft)
    taken = existing.reference_number
    await service.dispatcher.drain()
    sink.events.clear()

    async def always_taken(session):
        return taken

    monkeypatch.setattr(booking_service_module, "generate_unique_reference_number", always_taken)

    with pytest.raises(ReferenceGenerationError):
        await service.create_booking(db, customer_id, draft)
    assert sink.events == []


# ==================== SCENARIOS ====================


async def test_provider_confirms(service, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    booking = await service.confirm(db, booking_id, provider_id, provider_notes="  Meet at 9  ")
    await service.dispatcher.drain()

    assert booking.status == "CONFIRMED"
    assert booking.confirmed_at is not None
    assert booking.provider_notes == "Meet at 9"
    assert booking.version == 2

    [event] = sink.events
    assert event.action == "confirm"
    assert event.previous_status == "PENDING"
    assert event.next_status == "CONFIRMED"
    assert event.actor_user_id == provider_id


async def test_customer_cannot_confirm(service, db, pending_booking, customer_id, sink):
    booking_id = pending_booking.id
    with pytest.raises(NotAuthorized):
        await service.confirm(db, booking_id, customer_id)
    await service.dispatcher.drain()

    reloaded = await service.repository.get(db, booking_id)
    assert reloaded.status == "PENDING"
    assert sink.events == []


async def test_decline_requires_reason(service, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    with pytest.raises(MissingRequiredField):
        await service.decline(db, booking_id, provider_id, declined_reason="   ")

    reloaded = await service.repository.get(db, booking_id)
    assert reloaded.status == "PENDING"
    assert sink.events == []


async def test_decline_with_reason(service, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    booking = await service.decline(db, booking_id, provider_id, declined_reason="Fully booked")
    await service.dispatcher.drain()

    assert booking.status == "DECLINED"
    assert booking.declined_reason == "Fully booked"
    assert booking.declined_at is not None
    assert sink.events[0].reason == "Fully booked"


async def test_customer_cancels_confirmed_booking(service, db, pending_booking, customer_id, provider_id):
    booking_id = pending_booking.id
    await service.confirm(db, booking_id, provider_id)

    booking = await service.cancel(db, booking_id, customer_id)

    assert booking.status == "CANCELLED"
    assert booking.cancelled_by == "customer"
    assert booking.cancelled_at is not None
    assert booking.confirmed_at is not None


async def test_provider_cannot_cancel(service, db, pending_booking, provider_id):
    booking_id = pending_booking.id
    with pytest.raises(NotAuthorized):
        await service.cancel(db, booking_id, provider_id)


async def test_complete_requires_confirmed(service, db, pending_booking, provider_id):
    booking_id = pending_booking.id
    with pytest.raises(InvalidTransition):
        await service.complete(db, booking_id, provider_id)

    await service.confirm(db, booking_id, provider_id)
    booking = await service.complete(db, booking_id, provider_id)
    assert booking.status == "COMPLETED"
    assert booking.completed_at is not None


async def test_stranger_is_not_authorized(service, db, pending_booking):
    booking_id = pending_booking.id
    with pytest.raises(NotAuthorized):
        await service.perform_action(db, booking_id, uuid.uuid4(), BookingAction.CONFIRM)


async def test_unknown_booking(service, db, provider_id):
    with pytest.raises(BookingNotFound):
        await service.perform_action(db, uuid.uuid4(), provider_id, "confirm")


async def test_terminal_booking_rejects_repeat(service, db, pending_booking, customer_id, sink):
    booking_id = pending_booking.id
    await service.cancel(db, booking_id, customer_id)
    await service.dispatcher.drain()
    sink.events.clear()

    with pytest.raises(InvalidTransition):
        await service.cancel(db, booking_id, customer_id)
    await service.dispatcher.drain()

    reloaded = await service.repository.get(db, booking_id)
    assert reloaded.status == "CANCELLED"
    assert reloaded.version == 2
    assert sink.events == []


# ==================== CONCURRENCY ====================


async def test_retries_after_version_conflict(dispatcher, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    repository = ConflictingRepository(conflicts=2)
    service = BookingService(repository=repository, dispatcher=dispatcher, max_attempts=3)

    booking = await service.confirm(db, booking_id, provider_id)
    await service.dispatcher.drain()

    assert booking.status == "CONFIRMED"
    assert repository.writes == 3
    assert len(sink.events) == 1


async def test_gives_up_after_max_attempts(dispatcher, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    repository = ConflictingRepository(conflicts=10)
    service = BookingService(repository=repository, dispatcher=dispatcher, max_attempts=3)

    with pytest.raises(BookingConflict):
        await service.confirm(db, booking_id, provider_id)
    await service.dispatcher.drain()

    assert repository.writes == 3
    assert sink.events == []
    reloaded = await service.repository.get(db, booking_id)
    assert reloaded.status == "PENDING"


async def test_concurrent_confirm_and_decline(dispatcher, session_factory, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    repository = RacingRepository()
    service = BookingService(repository=repository, dispatcher=dispatcher)

    async def attempt(action, payload):
        async with session_factory() as session:
            try:
                booking = await service.perform_action(session, booking_id, provider_id, action, payload)
            except InvalidTransition as e:
                return e
            finally:
                repository.writer_done.set()
            return booking.status

    results = await asyncio.gather(
        attempt(BookingAction.CONFIRM, {}),
        attempt(BookingAction.DECLINE, {"declined_reason": "Double booked"}),
    )
    await service.dispatcher.drain()

    winners = [r for r in results if isinstance(r, str)]
    losers = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert len(sink.events) == 1

    async with session_factory() as session:
        final = await service.repository.get(session, booking_id)
    assert final.status == winners[0]
    assert final.version == 2
    if final.status == "CONFIRMED":
        assert final.declined_reason is None and final.declined_at is None
    else:
        assert final.confirmed_at is None


async def test_timeout_leaves_booking_unchanged(dispatcher, db, pending_booking, provider_id, sink):
    booking_id = pending_booking.id
    service = BookingService(repository=SlowRepository(), dispatcher=dispatcher)

    with pytest.raises(TransitionTimeout):
        await service.perform_action(db, booking_id, provider_id, "confirm", timeout=0.05)
    await service.dispatcher.drain()

    reloaded = await BookingRepository().get(db, booking_id)
    assert reloaded.status == "PENDING"
    assert sink.events == []


# ==================== READS ====================


async def test_get_booking_for_actor(service, db, pending_booking, customer_id, provider_id):
    booking_id = pending_booking.id
    assert (await service.get_booking_for_actor(db, booking_id, customer_id)).id == booking_id
    assert (await service.get_booking_for_actor(db, booking_id, provider_id)).id == booking_id

    with pytest.raises(NotAuthorized):
        await service.get_booking_for_actor(db, booking_id, uuid.uuid4())

    admin_view = await service.get_booking_for_actor(db, booking_id, uuid.uuid4(), is_admin=True)
    assert admin_view.id == booking_id


async def test_get_allowed_actions(service, db, pending_booking, customer_id, provider_id):
    booking_id = pending_booking.id
    _, provider_actions = await service.get_allowed_actions(db, booking_id, provider_id)
    _, customer_actions = await service.get_allowed_actions(db, booking_id, customer_id)

    assert provider_actions == [BookingAction.CONFIRM, BookingAction.DECLINE]
    assert customer_actions == [BookingAction.CANCEL]


# ==================== EXPIRATION ====================


async def test_expire_stale_bookings(service, db, customer_id, draft, sink):
    stale = await service.create_booking(db, customer_id, draft)
    fresh = await service.create_booking(db, customer_id, draft)
    await service.dispatcher.drain()
    sink.events.clear()

    now = datetime.now(UTC) + timedelta(hours=49)
    fresh.created_at = now - timedelta(hours=1)
    await db.commit()

    declined = await service.expire_stale_bookings(db, now=now)
    await service.dispatcher.drain()

    assert [b.id for b in declined] == [stale.id]
    reloaded = await service.repository.get(db, stale.id)
    assert reloaded.status == BookingStatus.DECLINED.value
    assert reloaded.declined_reason == AUTO_DECLINE_REASON
    assert (await service.repository.get(db, fresh.id)).status == "PENDING"

    [event] = sink.events
    assert event.action == "decline"
    assert event.actor_user_id is None
    assert event.reason == AUTO_DECLINE_REASON


async def test_expire_skips_bookings_already_answered(service, db, pending_booking, provider_id):
    booking_id = pending_booking.id
    await service.confirm(db, booking_id, provider_id)

    declined = await service.expire_stale_bookings(db, now=datetime.now(UTC) + timedelta(hours=72))

    assert declined == []
