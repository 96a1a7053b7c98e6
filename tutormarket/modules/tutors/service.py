"""Tutors business logic layer."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.modules.identity.service import Principal
from tutormarket.modules.tutors.models import SessionType, Tutor
from tutormarket.modules.tutors.repository import TutorsRepository
from tutormarket.modules.tutors.schemas import SessionTypeCreate, SessionTypeUpdate
from tutormarket.shared.exceptions import NotFoundException, UnauthorizedException, ValidationException


def ensure_can_manage_tutor(principal: Principal, tutor: Tutor) -> None:
    """Only the tutor themselves or admin/owner may change tutor-owned data."""
    if principal.is_staff or principal.id == tutor.user_id:
        return
    raise UnauthorizedException("You can only manage your own tutor profile")


class TutorsService:
    """Tutors domain service."""

    def __init__(self, repository: TutorsRepository) -> None:
        self.repository = repository

    async def get_tutor(self, tutor_id: UUID) -> Tutor:
        tutor = await self.repository.get_tutor(tutor_id)
        if tutor is None:
            raise NotFoundException("Tutor not found")
        return tutor

    async def get_bookable_tutor(self, tutor_id: UUID) -> Tutor:
        """Return the tutor if active and approved; otherwise behave as missing."""
        tutor = await self.repository.get_tutor(tutor_id)
        if tutor is None or not tutor.is_bookable:
            raise NotFoundException("Tutor not found or not available")
        return tutor

    async def list_session_types(self, tutor_id: UUID, *, include_inactive: bool = False) -> list[SessionType]:
        await self.get_tutor(tutor_id)
        return await self.repository.list_session_types(tutor_id, active_only=not include_inactive)

    async def create_session_type(
        self,
        tutor_id: UUID,
        payload: SessionTypeCreate,
        principal: Principal,
    ) -> SessionType:
        tutor = await self.get_tutor(tutor_id)
        ensure_can_manage_tutor(principal, tutor)
        return await self.repository.create_session_type(tutor.id, **payload.model_dump())

    async def update_session_type(
        self,
        session_type_id: UUID,
        payload: SessionTypeUpdate,
        principal: Principal,
    ) -> SessionType:
        session_type = await self.repository.get_session_type(session_type_id)
        if session_type is None:
            raise NotFoundException("Session type not found")
        tutor = await self.get_tutor(session_type.tutor_id)
        ensure_can_manage_tutor(principal, tutor)

        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationException("No fields to update")
        return await self.repository.update_session_type(session_type, **changes)


async def get_tutors_service(session: AsyncSession = Depends(get_db_session)) -> TutorsService:
    """Dependency provider for tutors service."""
    return TutorsService(TutorsRepository(session))
