import uuid
from datetime import UTC, datetime, timedelta

import pytest

from app.core.exceptions import BookingNotFound
from app.domain.booking_state import BookingEntityType, BookingStatus
from app.repositories.booking_repository import VersionConflict, booking_repository


async def make_booking(db, customer_id, provider_id, reference="BK-261019-AAAA", **fields):
    booking = await booking_repository.create(
        db,
        reference_number=reference,
        entity_type=fields.pop("entity_type", BookingEntityType.TOUR.value),
        entity_id=uuid.uuid4(),
        user_id=customer_id,
        provider_user_id=provider_id,
        **fields,
    )
    await db.commit()
    return booking


async def test_create_starts_pending_with_defaults(db, customer_id, provider_id):
    booking = await make_booking(db, customer_id, provider_id)

    assert booking.status == BookingStatus.PENDING.value
    assert booking.version == 1
    assert booking.guests == 1
    assert booking.currency == "GEL"
    assert booking.created_at is not None
    assert booking.confirmed_at is None


async def test_apply_transition_writes_status_timestamp_and_fields_together(db, customer_id, provider_id):
    booking = await make_booking(db, customer_id, provider_id)
    now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    result = await booking_repository.apply_transition(
        db,
        booking.id,
        expected_status=BookingStatus.PENDING,
        next_status=BookingStatus.DECLINED,
        timestamp_field="declined_at",
        extra_fields={"declined_reason": "No availability"},
        now=now,
    )
    await db.commit()

    assert not isinstance(result, VersionConflict)
    assert result.status == "DECLINED"
    assert result.declined_reason == "No availability"
    assert result.declined_at.replace(tzinfo=UTC) == now
    assert result.version == 2
    assert result.confirmed_at is None


async def test_apply_transition_reports_conflict_when_status_moved(db, customer_id, provider_id):
    booking = await make_booking(db, customer_id, provider_id)
    await booking_repository.apply_transition(
        db, booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, "confirmed_at"
    )
    await db.commit()

    result = await booking_repository.apply_transition(
        db, booking.id, BookingStatus.PENDING, BookingStatus.DECLINED, "declined_at",
        extra_fields={"declined_reason": "late"},
    )

    assert result == VersionConflict(booking_id=booking.id, expected_status=BookingStatus.PENDING)
    reloaded = await booking_repository.get(db, booking.id)
    assert reloaded.status == "CONFIRMED"
    assert reloaded.declined_reason is None
    assert reloaded.declined_at is None


async def test_apply_transition_unknown_booking(db):
    with pytest.raises(BookingNotFound):
        await booking_repository.apply_transition(
            db, uuid.uuid4(), BookingStatus.PENDING, BookingStatus.CONFIRMED, "confirmed_at"
        )


async def test_apply_transition_rejects_fields_outside_transition(db, customer_id, provider_id):
    booking = await make_booking(db, customer_id, provider_id)

    with pytest.raises(ValueError):
        await booking_repository.apply_transition(
            db, booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, "confirmed_at",
            extra_fields={"total_price": 0},
        )
    with pytest.raises(ValueError):
        await booking_repository.apply_transition(
            db, booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, "created_at"
        )


async def test_get_missing_returns_none(db):
    assert await booking_repository.get(db, uuid.uuid4()) is None


async def test_reference_number_exists(db, customer_id, provider_id):
    await make_booking(db, customer_id, provider_id, reference="BK-261019-ZZ99")

    assert await booking_repository.reference_number_exists(db, "BK-261019-ZZ99")
    assert not await booking_repository.reference_number_exists(db, "BK-261019-ZZ98")


async def test_list_for_customer_filters_and_paginates(db, customer_id, provider_id):
    for i in range(3):
        await make_booking(db, customer_id, provider_id, reference=f"BK-261019-T00{i}")
    await make_booking(
        db, customer_id, provider_id, reference="BK-261019-G001", entity_type=BookingEntityType.GUIDE.value
    )
    await make_booking(db, uuid.uuid4(), provider_id, reference="BK-261019-X001")

    bookings, total = await booking_repository.list_for_customer(db, customer_id, page=1, page_size=2)
    assert total == 4
    assert len(bookings) == 2
    assert all(b.user_id == customer_id for b in bookings)

    guides, total = await booking_repository.list_for_customer(
        db, customer_id, entity_type=BookingEntityType.GUIDE
    )
    assert total == 1
    assert guides[0].reference_number == "BK-261019-G001"

    confirmed, total = await booking_repository.list_for_customer(
        db, customer_id, status=BookingStatus.CONFIRMED
    )
    assert (confirmed, total) == ([], 0)


async def test_list_for_provider(db, customer_id, provider_id):
    await make_booking(db, customer_id, provider_id, reference="BK-261019-P001")
    await make_booking(db, customer_id, uuid.uuid4(), reference="BK-261019-P002")

    bookings, total = await booking_repository.list_for_provider(db, provider_id)

    assert total == 1
    assert bookings[0].reference_number == "BK-261019-P001"


async def test_find_expired_pending(db, customer_id, provider_id):
    now = datetime.now(UTC)
    old = await make_booking(
        db, customer_id, provider_id, reference="BK-261019-OLD1", created_at=now - timedelta(hours=50)
    )
    await make_booking(
        db, customer_id, provider_id, reference="BK-261019-NEW1", created_at=now - timedelta(hours=1)
    )
    confirmed = await make_booking(
        db, customer_id, provider_id, reference="BK-261019-OLD2", created_at=now - timedelta(hours=60)
    )
    await booking_repository.apply_transition(
        db, confirmed.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, "confirmed_at"
    )
    await db.commit()

    expired = await booking_repository.find_expired_pending(db, now - timedelta(hours=48))

    assert [b.id for b in expired] == [old.id]
