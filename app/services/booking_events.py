"""Booking side-effect events and their fire-and-forget dispatcher.

Every committed transition produces exactly one ``BookingEvent``. The
dispatcher hands it to each registered sink in a detached task so the
request never waits on delivery. A sink that fails or overruns
``event_delivery_timeout_seconds`` gets the event queued for redelivery
through Celery; the booking itself is never touched again.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel

from app.config import settings
from app.models.booking import Booking

logger = logging.getLogger(__name__)

CREATE_ACTION = "create"


class BookingEvent(BaseModel):
    """Side effect of one booking transition."""

    booking_id: UUID
    reference_number: str
    action: str  # create, confirm, decline, cancel, complete
    previous_status: str | None
    next_status: str
    actor_user_id: UUID | None  # None for system expiry
    customer_user_id: UUID
    provider_user_id: UUID
    timestamp: datetime
    reason: str | None = None

    @classmethod
    def from_booking(
        cls,
        booking: Booking,
        action: str,
        previous_status: str | None,
        actor_user_id: UUID | None,
        timestamp: datetime,
    ) -> "BookingEvent":
        return cls(
            booking_id=booking.id,
            reference_number=booking.reference_number,
            action=action,
            previous_status=previous_status,
            next_status=booking.status,
            actor_user_id=actor_user_id,
            customer_user_id=booking.user_id,
            provider_user_id=booking.provider_user_id,
            timestamp=timestamp,
            reason=booking.declined_reason if booking.status == "DECLINED" else None,
        )


class BookingEventSink(Protocol):
    """Receiver of booking events (audit trail, notifications)."""

    name: str

    async def handle(self, event: BookingEvent) -> None: ...


Requeue = Callable[[str, BookingEvent], Awaitable[None]]


async def enqueue_redelivery(sink_name: str, event: BookingEvent) -> None:
    """Queue an event for later redelivery by the Celery worker."""
    from app.tasks import redeliver_booking_event

    # Publishing blocks on the broker connection
    await asyncio.to_thread(
        redeliver_booking_event.delay, sink_name, event.model_dump(mode="json")
    )


class BookingEventDispatcher:
    """Delivers booking events to sinks without blocking the caller."""

    def __init__(
        self,
        sinks: list[BookingEventSink] | None = None,
        timeout: float | None = None,
        requeue: Requeue | None = None,
    ) -> None:
        self._sinks: dict[str, BookingEventSink] = {}
        for sink in sinks or []:
            self.register(sink)
        self.timeout = timeout if timeout is not None else settings.event_delivery_timeout_seconds
        self._requeue = requeue or enqueue_redelivery
        self._pending: set[asyncio.Task] = set()

    def register(self, sink: BookingEventSink) -> None:
        self._sinks[sink.name] = sink

    @property
    def sink_names(self) -> list[str]:
        return list(self._sinks)

    def dispatch(self, event: BookingEvent) -> None:
        """Schedule delivery to every sink and return immediately."""
        for sink in self._sinks.values():
            task = asyncio.create_task(self._deliver_or_requeue(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def deliver(self, sink_name: str, event: BookingEvent) -> None:
        """Deliver to one sink inline, raising on failure (used by redelivery)."""
        sink = self._sinks.get(sink_name)
        if sink is None:
            raise KeyError(f"Unknown booking event sink: {sink_name}")
        await asyncio.wait_for(sink.handle(event), timeout=self.timeout)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver_or_requeue(self, sink: BookingEventSink, event: BookingEvent) -> None:
        try:
            await asyncio.wait_for(sink.handle(event), timeout=self.timeout)
        except TimeoutError:
            logger.error(
                f"Sink '{sink.name}' timed out on {event.action} event for booking {event.booking_id}"
            )
        except Exception:
            logger.error(
                f"Sink '{sink.name}' failed on {event.action} event for booking {event.booking_id}",
                exc_info=True,
            )
        else:
            return

        try:
            await self._requeue(sink.name, event)
            logger.info(f"Queued {event.action} event for booking {event.booking_id} to '{sink.name}'")
        except Exception:
            logger.error(
                f"Dropped {event.action} event for booking {event.booking_id} to '{sink.name}'",
                exc_info=True,
            )
