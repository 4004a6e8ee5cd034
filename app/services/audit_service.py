"""Booking audit trail service."""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin import AuditLog
from app.services.booking_events import BookingEvent

logger = logging.getLogger(__name__)

SessionContext = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class AuditService:
    """Service for append-only audit logging of booking actions."""

    BOOKING_ACTIONS = {
        "booking_create",
        "booking_confirm",
        "booking_decline",
        "booking_cancel",
        "booking_complete",
    }

    name = "audit"

    def __init__(self, session_context: SessionContext | None = None) -> None:
        self._session_context = session_context

    async def log_action(
        self,
        db: AsyncSession,
        user_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: UUID,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        """Log an action (immutable).

        Args:
            db: Database session
            user_id: User performing the action, None for the system
            action: Action name (e.g., "booking_confirm")
            resource_type: Resource type (e.g., "booking")
            resource_id: Resource ID
            old_values: Previous state
            new_values: New state
            ip_address: Client IP
            user_agent: Client user agent

        Returns:
            Created audit log entry
        """
        audit = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(audit)
        return audit

    async def log_booking_event(self, db: AsyncSession, event: BookingEvent) -> AuditLog:
        """Log a booking transition event."""
        new_values: dict[str, Any] = {
            "status": event.next_status,
            "reference_number": event.reference_number,
            "at": event.timestamp.isoformat(),
        }
        if event.reason:
            new_values["reason"] = event.reason

        return await self.log_action(
            db=db,
            user_id=event.actor_user_id,
            action=f"booking_{event.action}",
            resource_type="booking",
            resource_id=event.booking_id,
            old_values={"status": event.previous_status} if event.previous_status else None,
            new_values=new_values,
        )

    async def handle(self, event: BookingEvent) -> None:
        """Event sink entry point: write the entry in its own transaction."""
        session_context = self._session_context
        if session_context is None:
            from app.database import get_db_context

            session_context = get_db_context
        async with session_context() as db:
            await self.log_booking_event(db, event)
        logger.debug(f"Audited booking_{event.action} for booking {event.booking_id}")


audit_service = AuditService()
