"""Tutors API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from tutormarket.modules.identity.service import Principal, get_current_principal
from tutormarket.modules.tutors.schemas import (
    SessionTypeCreate,
    SessionTypeRead,
    SessionTypeUpdate,
    TutorRead,
)
from tutormarket.modules.tutors.service import TutorsService, get_tutors_service

router = APIRouter(prefix="/tutors", tags=["tutors"])


@router.get("/{tutor_id}", response_model=TutorRead)
async def get_tutor(
    tutor_id: UUID,
    service: TutorsService = Depends(get_tutors_service),
) -> TutorRead:
    """Return tutor profile."""
    return TutorRead.model_validate(await service.get_tutor(tutor_id))


@router.get("/{tutor_id}/session-types", response_model=list[SessionTypeRead])
async def list_session_types(
    tutor_id: UUID,
    include_inactive: bool = Query(default=False),
    service: TutorsService = Depends(get_tutors_service),
) -> list[SessionTypeRead]:
    """List session offerings of a tutor."""
    items = await service.list_session_types(tutor_id, include_inactive=include_inactive)
    return [SessionTypeRead.model_validate(item) for item in items]


@router.post(
    "/{tutor_id}/session-types",
    response_model=SessionTypeRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_session_type(
    tutor_id: UUID,
    payload: SessionTypeCreate,
    service: TutorsService = Depends(get_tutors_service),
    principal: Principal = Depends(get_current_principal),
) -> SessionTypeRead:
    """Create session type for a tutor."""
    session_type = await service.create_session_type(tutor_id, payload, principal)
    return SessionTypeRead.model_validate(session_type)


@router.patch("/session-types/{session_type_id}", response_model=SessionTypeRead)
async def update_session_type(
    session_type_id: UUID,
    payload: SessionTypeUpdate,
    service: TutorsService = Depends(get_tutors_service),
    principal: Principal = Depends(get_current_principal),
) -> SessionTypeRead:
    """Update session type."""
    session_type = await service.update_session_type(session_type_id, payload, principal)
    return SessionTypeRead.model_validate(session_type)
