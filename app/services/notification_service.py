"""Notification Service for booking lifecycle events.

Handles two channels:
- In-app notifications (database)
- Email (SendGrid), to the contact address the customer left on the booking
"""

import html
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.booking import Booking
from app.models.notification import Notification
from app.services.booking_events import BookingEvent

logger = logging.getLogger(__name__)

SessionContext = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class NotificationService:
    """Service for notifying booking parties."""

    # Notification types
    BOOKING_REQUEST = "booking_request"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_DECLINED = "booking_declined"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"

    name = "notifications"

    def __init__(self, session_context: SessionContext | None = None) -> None:
        """Initialize notification service."""
        self._session_context = session_context
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== IN-APP NOTIFICATIONS ====================

    async def create_notification(
        self,
        db: AsyncSession,
        user_id: UUID,
        title: str,
        body: str,
        notification_type: str,
        action_url: str | None = None,
        booking_id: UUID | None = None,
    ) -> Notification:
        """Create an in-app notification."""
        notification = Notification(
            user_id=user_id,
            title=title,
            body=body,
            notification_type=notification_type,
            action_url=action_url,
            booking_id=booking_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    # ==================== EMAIL (SENDGRID) ====================

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> bool:
        """Send an email via SendGrid.

        Args:
            to_email: Recipient email
            subject: Email subject
            html_content: HTML body
            text_content: Plain text body

        Returns:
            bool: True if sent successfully
        """
        if not settings.sendgrid_api_key:
            return False

        headers = {
            "Authorization": f"Bearer {settings.sendgrid_api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {
                "email": settings.email_from_address,
                "name": settings.email_from_name,
            },
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        try:
            response = await self.http_client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError:
            logger.warning(f"SendGrid request failed for {to_email}", exc_info=True)
            return False
        return response.status_code in (200, 202)

    def _generate_email_html(self, title: str, body: str) -> str:
        """Generate simple HTML email content."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"></head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
                     max-width: 600px; margin: 0 auto; padding: 20px; color: #333;">
            <h1 style="color: #111827; font-size: 24px;">{html.escape(title)}</h1>
            <p style="color: #4b5563; font-size: 16px; line-height: 1.6;">{html.escape(body)}</p>
            <p style="color: #9ca3af; font-size: 12px; margin-top: 24px; text-align: center;">
                &copy; {datetime.now(UTC).year} {html.escape(settings.email_from_name)}
            </p>
        </body>
        </html>
        """

    # ==================== BOOKING EVENTS ====================

    def build_messages(self, event: BookingEvent) -> list[dict[str, Any]]:
        """Work out who hears about an event and what they are told."""
        ref = event.reference_number
        customer_url = f"/bookings/{event.booking_id}"
        provider_url = f"/bookings/received/{event.booking_id}"

        if event.action == "create":
            return [{
                "user_id": event.provider_user_id,
                "title": "New booking request",
                "body": f"You have a new booking request. Booking #{ref}",
                "type": self.BOOKING_REQUEST,
                "action_url": provider_url,
                "email_customer": False,
            }]
        if event.action == "confirm":
            return [{
                "user_id": event.customer_user_id,
                "title": "Booking confirmed!",
                "body": f"Your booking #{ref} has been confirmed by the provider.",
                "type": self.BOOKING_CONFIRMED,
                "action_url": customer_url,
                "email_customer": True,
            }]
        if event.action == "decline":
            body = f"Your booking #{ref} was declined."
            if event.reason:
                body = f"{body} Reason: {event.reason}"
            return [{
                "user_id": event.customer_user_id,
                "title": "Booking declined",
                "body": body,
                "type": self.BOOKING_DECLINED,
                "action_url": customer_url,
                "email_customer": True,
            }]
        if event.action == "cancel":
            return [{
                "user_id": event.provider_user_id,
                "title": "Booking cancelled",
                "body": f"The customer cancelled booking #{ref}.",
                "type": self.BOOKING_CANCELLED,
                "action_url": provider_url,
                "email_customer": False,
            }]
        if event.action == "complete":
            return [{
                "user_id": event.customer_user_id,
                "title": "Booking completed",
                "body": f"Booking #{ref} is complete. We hope you enjoyed it!",
                "type": self.BOOKING_COMPLETED,
                "action_url": customer_url,
                "email_customer": True,
            }]
        logger.warning(f"No notification template for booking action '{event.action}'")
        return []

    async def notify_booking_event(self, db: AsyncSession, event: BookingEvent) -> list[Notification]:
        """Create in-app notifications and email the customer where relevant."""
        notifications = []
        contact_email: str | None = None

        for message in self.build_messages(event):
            notification = await self.create_notification(
                db=db,
                user_id=message["user_id"],
                title=message["title"],
                body=message["body"],
                notification_type=message["type"],
                action_url=message["action_url"],
                booking_id=event.booking_id,
            )
            notifications.append(notification)

            if message["email_customer"]:
                if contact_email is None:
                    booking = await db.get(Booking, event.booking_id)
                    contact_email = booking.contact_email if booking else None
                if contact_email:
                    notification.email_sent = await self.send_email(
                        to_email=contact_email,
                        subject=message["title"],
                        html_content=self._generate_email_html(message["title"], message["body"]),
                        text_content=message["body"],
                    )

        return notifications

    async def handle(self, event: BookingEvent) -> None:
        """Event sink entry point."""
        session_context = self._session_context
        if session_context is None:
            from app.database import get_db_context

            session_context = get_db_context
        async with session_context() as db:
            await self.notify_booking_event(db, event)


# Singleton instance
notification_service = NotificationService()
