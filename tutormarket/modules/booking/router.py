"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query

from tutormarket.modules.billing.rate_limit import enforce_refund_rate_limit
from tutormarket.modules.billing.schemas import CancellationRead
from tutormarket.modules.booking.schemas import BookingCancelRequest, BookingRead, BookingStatsRead
from tutormarket.modules.booking.service import BookingService, get_booking_service
from tutormarket.modules.identity.service import Principal, get_current_principal
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["booking"])


@router.get("/my", response_model=Page[BookingRead])
async def list_my_bookings(
    pagination=Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[BookingRead]:
    """List bookings the caller made or attends."""
    items, total = await service.list_my_bookings(
        principal,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/tutor", response_model=Page[BookingRead])
async def list_tutor_bookings(
    tutor_id: UUID | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[BookingRead]:
    """List a tutor's bookings (the tutor themselves or admin)."""
    items, total = await service.list_tutor_bookings(
        principal,
        tutor_id,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/stats", response_model=BookingStatsRead)
async def booking_stats(
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingStatsRead:
    return await service.get_booking_stats(principal)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    booking = await service.get_booking(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.delete(
    "/{booking_id}",
    response_model=CancellationRead,
    dependencies=[Depends(enforce_refund_rate_limit)],
)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancelRequest | None = Body(default=None),
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> CancellationRead:
    """Cancel booking and apply refund policy."""
    reason = payload.reason if payload is not None else None
    return await service.cancel_booking(booking_id, principal, reason)


@router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Mark a held session as completed (tutor or admin)."""
    booking = await service.complete_booking(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/no-show", response_model=BookingRead)
async def mark_no_show(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Record that the student did not attend (tutor or admin)."""
    booking = await service.mark_no_show(booking_id, principal)
    return BookingRead.model_validate(booking)
