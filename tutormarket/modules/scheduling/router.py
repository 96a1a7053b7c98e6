"""Scheduling API router."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from tutormarket.modules.identity.service import Principal, get_current_principal
from tutormarket.modules.scheduling.schemas import (
    ExceptionCreate,
    ExceptionRead,
    SlotRead,
    SlotsRead,
    WindowCreate,
    WindowRead,
    WindowUpdate,
)
from tutormarket.modules.scheduling.service import SchedulingService, get_scheduling_service

router = APIRouter(prefix="/tutors", tags=["scheduling"])


@router.get("/{tutor_id}/slots", response_model=SlotsRead)
async def get_slots(
    tutor_id: UUID,
    on_date: date = Query(alias="date"),
    duration: int | None = Query(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
) -> SlotsRead:
    """List free start times for a date and session length."""
    duration_minutes = duration if duration is not None else service.settings.default_session_duration_minutes
    tutor, slots = await service.get_free_slots(tutor_id, on_date, duration_minutes)
    return SlotsRead(
        tutor_id=tutor.id,
        session_date=on_date,
        duration_minutes=duration_minutes,
        timezone=tutor.timezone,
        slots=[SlotRead(start_time=slot.start_time, end_time=slot.end_time) for slot in slots],
    )


@router.get("/{tutor_id}/schedule", response_model=list[WindowRead])
async def list_schedule(
    tutor_id: UUID,
    include_inactive: bool = Query(default=False),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[WindowRead]:
    """Weekly availability windows of a tutor."""
    items = await service.list_windows(tutor_id, include_inactive=include_inactive)
    return [WindowRead.model_validate(item) for item in items]


@router.post("/{tutor_id}/schedule", response_model=WindowRead, status_code=status.HTTP_201_CREATED)
async def create_window(
    tutor_id: UUID,
    payload: WindowCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> WindowRead:
    """Add a weekly availability window."""
    window = await service.create_window(tutor_id, payload, principal)
    return WindowRead.model_validate(window)


@router.patch("/{tutor_id}/schedule/{window_id}", response_model=WindowRead)
async def update_window(
    tutor_id: UUID,
    window_id: UUID,
    payload: WindowUpdate,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> WindowRead:
    """Change or deactivate a weekly availability window."""
    window = await service.update_window(tutor_id, window_id, payload, principal)
    return WindowRead.model_validate(window)


@router.delete("/{tutor_id}/schedule/{window_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_window(
    tutor_id: UUID,
    window_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    await service.delete_window(tutor_id, window_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{tutor_id}/exceptions", response_model=list[ExceptionRead])
async def list_exceptions(
    tutor_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> list[ExceptionRead]:
    """Date overrides of a tutor (tutor owner or admin)."""
    items = await service.list_exceptions(tutor_id, principal)
    return [ExceptionRead.model_validate(item) for item in items]


@router.post("/{tutor_id}/exceptions", response_model=ExceptionRead, status_code=status.HTTP_201_CREATED)
async def create_exception(
    tutor_id: UUID,
    payload: ExceptionCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> ExceptionRead:
    """Close a date or replace its hours."""
    exception = await service.create_exception(tutor_id, payload, principal)
    return ExceptionRead.model_validate(exception)


@router.delete("/{tutor_id}/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exception(
    tutor_id: UUID,
    exception_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    await service.delete_exception(tutor_id, exception_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
