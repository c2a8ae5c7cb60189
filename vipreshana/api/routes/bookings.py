from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ...domain.bookings import (
    AcceptBookingRequest,
    Booking,
    BookingActionRequest,
    BookingChanges,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingStatus,
    BookingUpdateRequest,
)
from ...domain.pagination import PaginationParams
from ...domain.users import UserRole
from ...services.auth import AuthFacade
from ...services.bookings import BookingLifecycle
from ...services.pagination import paginate_sequence
from ..dependencies import get_auth_facade, get_booking_lifecycle, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _page(bookings: list[Booking], pagination: PaginationParams) -> BookingListResponse:
    page, meta = paginate_sequence(bookings, pagination)
    return BookingListResponse(data=page, count=meta.total, pagination=meta)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    booking = await lifecycle.create(payload)
    return BookingResponse(data=booking)


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination_params),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingListResponse:
    """List all bookings, newest first; drivers poll this with ``status=pending``."""

    return _page(await lifecycle.list(status_filter), pagination)


@router.get("/{phone}", response_model=BookingListResponse)
async def list_bookings_for_phone(
    phone: str,
    pagination: PaginationParams = Depends(get_pagination_params),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingListResponse:
    return _page(await lifecycle.list_for_phone(phone), pagination)


@router.put("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: UUID,
    payload: AcceptBookingRequest,
    auth: AuthFacade = Depends(get_auth_facade),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    driver = await auth.resolve_actor(payload.driver_ref, role=UserRole.DRIVER)
    booking = await lifecycle.accept(booking_id, driver.ref)
    return BookingResponse(data=booking)


@router.put("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    payload: BookingActionRequest,
    auth: AuthFacade = Depends(get_auth_facade),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    actor = await auth.resolve_actor(payload.actor_ref)
    booking = await lifecycle.complete(booking_id, actor)
    return BookingResponse(data=booking)


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingActionRequest,
    auth: AuthFacade = Depends(get_auth_facade),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    actor = await auth.resolve_actor(payload.actor_ref)
    booking = await lifecycle.cancel(booking_id, actor)
    return BookingResponse(data=booking)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdateRequest,
    auth: AuthFacade = Depends(get_auth_facade),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    actor = await auth.resolve_actor(payload.actor_ref)
    changes = BookingChanges.model_validate(
        payload.model_dump(exclude={"actor_ref"}, exclude_unset=True)
    )
    booking = await lifecycle.update_details(booking_id, actor, changes)
    return BookingResponse(data=booking)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: UUID,
    actor_ref: str = Query(..., max_length=32),
    auth: AuthFacade = Depends(get_auth_facade),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> Response:
    actor = await auth.resolve_actor(actor_ref, role=UserRole.ADMIN)
    await lifecycle.delete(booking_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
