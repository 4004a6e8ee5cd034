"""Shared fixtures: a throwaway SQLite database per test and a recording dispatcher."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.database import Base
from app.domain.booking_state import BookingEntityType
from app.services.booking_events import BookingEvent, BookingEventDispatcher
from app.services.booking_service import BookingDraft, BookingService


class RecordingSink:
    """Sink that remembers every event it receives."""

    def __init__(self, name: str = "recording") -> None:
        self.name = name
        self.events: list[BookingEvent] = []

    async def handle(self, event: BookingEvent) -> None:
        self.events.append(event)


class RequeueRecorder:
    """Stand-in for Celery redelivery."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, BookingEvent]] = []

    async def __call__(self, sink_name: str, event: BookingEvent) -> None:
        self.calls.append((sink_name, event))


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_context(session_factory):
    """Committing session context for event sinks.

    SQLite allows one writer at a time, so sink transactions are serialized.
    """
    lock = asyncio.Lock()

    @asynccontextmanager
    async def _context():
        async with lock, session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _context


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def requeue():
    return RequeueRecorder()


@pytest.fixture
def dispatcher(sink, requeue):
    return BookingEventDispatcher(sinks=[sink], timeout=1.0, requeue=requeue)


@pytest.fixture
def service(dispatcher):
    return BookingService(dispatcher=dispatcher)


@pytest.fixture
def customer_id():
    return uuid.uuid4()


@pytest.fixture
def provider_id():
    return uuid.uuid4()


@pytest.fixture
def draft(provider_id):
    return BookingDraft(
        entity_type=BookingEntityType.TOUR,
        entity_id=uuid.uuid4(),
        provider_user_id=provider_id,
        date=date(2026, 11, 20),
        guests=2,
        contact_email="customer@example.com",
    )


@pytest.fixture
async def pending_booking(service, db, customer_id, draft, sink):
    booking = await service.create_booking(db, customer_id, draft)
    await service.dispatcher.drain()
    sink.events.clear()
    return booking
