"""Celery background tasks for the booking lifecycle."""

import asyncio
import logging

from celery import shared_task

from app.database import close_db, get_db_context
from app.worker import celery_app  # noqa: F401  (binds shared tasks to the configured app)
from app.services.booking_events import BookingEvent
from app.services.booking_service import booking_service
from app.services.notification_service import notification_service

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context.

    Each call gets a fresh event loop, so pooled connections and the
    HTTP client are released before the loop closes.
    """

    async def _run():
        try:
            return await coro
        finally:
            await notification_service.close()
            await close_db()

    return asyncio.run(_run())


# ==================== EXPIRATION ====================


@shared_task(bind=True, max_retries=3)
def expire_pending_bookings(self):
    """Auto-decline PENDING bookings older than the expiration window.

    Runs hourly at minute 30.
    """
    try:
        declined = run_async(_expire_pending_bookings())
    except Exception as exc:
        logger.error(f"Booking expiration run failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    return {"status": "success", "declined": declined}


async def _expire_pending_bookings() -> int:
    async with get_db_context() as db:
        declined = await booking_service.expire_stale_bookings(db)
    await booking_service.dispatcher.drain()
    return len(declined)


# ==================== EVENT REDELIVERY ====================


@shared_task(bind=True, max_retries=5)
def redeliver_booking_event(self, sink_name: str, payload: dict):
    """Retry delivering a booking event to the sink that missed it."""
    event = BookingEvent.model_validate(payload)
    try:
        run_async(booking_service.dispatcher.deliver(sink_name, event))
    except KeyError:
        logger.error(f"Dropping event for booking {event.booking_id}: unknown sink '{sink_name}'")
        return {"status": "dropped", "sink": sink_name}
    except Exception as exc:
        logger.warning(
            f"Redelivery of {event.action} event for booking {event.booking_id} "
            f"to '{sink_name}' failed (attempt {self.request.retries + 1}): {exc}"
        )
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    logger.info(f"Redelivered {event.action} event for booking {event.booking_id} to '{sink_name}'")
    return {"status": "success", "sink": sink_name}
