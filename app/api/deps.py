"""API dependencies for authentication and common operations."""

import secrets
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.core.exceptions import AuthenticationError, CSRFError
from app.core.security import verify_token
from app.database import get_db
from app.services.booking_service import BookingService, booking_service

__all__ = [
    "Actor",
    "get_booking_service",
    "get_current_actor",
    "get_db",
    "require_csrf",
]

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller taken from the access token."""

    id: UUID
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """Get the current authenticated actor from JWT token."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = verify_token(credentials.credentials, token_type="access")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    try:
        actor_id = UUID(str(user_id))
    except ValueError:
        raise AuthenticationError("Invalid token subject")

    return Actor(id=actor_id, role=payload.get("role") or "user")


async def require_csrf(request: Request) -> None:
    """Double-submit check: the CSRF header must match the CSRF cookie."""
    if not settings.csrf_enabled:
        return

    header_token = request.headers.get(settings.csrf_header_name)
    cookie_token = request.cookies.get(settings.csrf_cookie_name)
    if not header_token or not cookie_token:
        raise CSRFError()
    if not secrets.compare_digest(header_token, cookie_token):
        raise CSRFError()


def get_booking_service() -> BookingService:
    """Booking service dependency (overridden in tests)."""
    return booking_service
