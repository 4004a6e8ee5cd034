"""Booking endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    Actor,
    get_booking_service,
    get_current_actor,
    get_db,
    require_csrf,
)
from app.config import settings
from app.core.middleware import booking_create_limiter, booking_transition_limiter
from app.domain.booking_state import BookingAction, BookingEntityType, BookingStatus
from app.models.booking import Booking
from app.repositories.booking_repository import booking_repository
from app.schemas.booking import (
    BookingActionsResponse,
    BookingConfirmRequest,
    BookingCreate,
    BookingDeclineRequest,
    BookingListResponse,
    BookingResponse,
)
from app.services.booking_service import BookingDraft, BookingService

router = APIRouter()

CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Session = Annotated[AsyncSession, Depends(get_db)]
Service = Annotated[BookingService, Depends(get_booking_service)]

transition_guards = [Depends(require_csrf), Depends(booking_transition_limiter)]


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf), Depends(booking_create_limiter)],
)
async def create_booking(
    request: BookingCreate,
    actor: CurrentActor,
    db: Session,
    service: Service,
) -> Booking:
    """Create a new booking request (starts PENDING)."""
    draft = BookingDraft(**request.model_dump())
    return await service.create_booking(db, actor.id, draft)


@router.get("", response_model=BookingListResponse)
async def get_my_bookings(
    actor: CurrentActor,
    db: Session,
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    entity_type: BookingEntityType | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> BookingListResponse:
    """Get bookings made by the current user."""
    bookings, total = await booking_repository.list_for_customer(
        db, actor.id, page, page_size, status=status_filter, entity_type=entity_type
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/received", response_model=BookingListResponse)
async def get_received_bookings(
    actor: CurrentActor,
    db: Session,
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    entity_type: BookingEntityType | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> BookingListResponse:
    """Get bookings received by the current user as a provider."""
    bookings, total = await booking_repository.list_for_provider(
        db, actor.id, page, page_size, status=status_filter, entity_type=entity_type
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
) -> Booking:
    """Get a booking by ID (either party or an admin)."""
    return await service.get_booking_for_actor(db, booking_id, actor.id, is_admin=actor.is_admin)


@router.get("/{booking_id}/actions", response_model=BookingActionsResponse)
async def get_booking_actions(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
) -> BookingActionsResponse:
    """List the actions the current user may take on a booking."""
    booking, actions = await service.get_allowed_actions(db, booking_id, actor.id)
    return BookingActionsResponse(
        booking_id=booking.id,
        status=booking.status,
        allowed_actions=actions,
    )


@router.post("/{booking_id}/confirm", response_model=BookingResponse, dependencies=transition_guards)
async def confirm_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
    request: BookingConfirmRequest | None = None,
) -> Booking:
    """Confirm a pending booking (provider only)."""
    payload = request.model_dump() if request else {}
    return await service.perform_action(
        db,
        booking_id,
        actor.id,
        BookingAction.CONFIRM,
        payload,
        timeout=settings.booking_transition_timeout_seconds,
    )


@router.post("/{booking_id}/decline", response_model=BookingResponse, dependencies=transition_guards)
async def decline_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
    request: BookingDeclineRequest | None = None,
) -> Booking:
    """Decline a pending booking with a reason (provider only)."""
    payload = request.model_dump() if request else {}
    return await service.perform_action(
        db,
        booking_id,
        actor.id,
        BookingAction.DECLINE,
        payload,
        timeout=settings.booking_transition_timeout_seconds,
    )


@router.post("/{booking_id}/complete", response_model=BookingResponse, dependencies=transition_guards)
async def complete_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
) -> Booking:
    """Mark a confirmed booking as completed (provider only)."""
    return await service.perform_action(
        db,
        booking_id,
        actor.id,
        BookingAction.COMPLETE,
        timeout=settings.booking_transition_timeout_seconds,
    )


@router.post("/{booking_id}/cancel", response_model=BookingResponse, dependencies=transition_guards)
async def cancel_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: Session,
    service: Service,
) -> Booking:
    """Cancel a pending or confirmed booking (customer only)."""
    return await service.perform_action(
        db,
        booking_id,
        actor.id,
        BookingAction.CANCEL,
        timeout=settings.booking_transition_timeout_seconds,
    )
