"""Database models."""

from app.models.admin import AuditLog
from app.models.booking import Booking
from app.models.notification import Notification

__all__ = [
    # Booking
    "Booking",
    # Notifications
    "Notification",
    # Admin
    "AuditLog",
]
