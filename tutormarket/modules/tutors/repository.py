"""Tutors repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.modules.tutors.models import SessionType, Tutor
from tutormarket.shared.exceptions import ConflictException


class TutorsRepository:
    """DB operations for tutors domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_tutor(self, tutor_id: UUID) -> Tutor | None:
        stmt = select(Tutor).where(Tutor.id == tutor_id)
        return await self.session.scalar(stmt)

    async def get_tutor_by_user_id(self, user_id: UUID) -> Tutor | None:
        stmt = select(Tutor).where(Tutor.user_id == user_id)
        return await self.session.scalar(stmt)

    async def lock_tutor(self, tutor_id: UUID) -> Tutor | None:
        """Load the tutor row with `SELECT ... FOR UPDATE`.

        Held until the surrounding transaction ends; serializes writers that
        check and claim the tutor's time.
        """
        stmt = select(Tutor).where(Tutor.id == tutor_id).with_for_update()
        return await self.session.scalar(stmt)

    async def list_session_types(self, tutor_id: UUID, *, active_only: bool) -> list[SessionType]:
        stmt = select(SessionType).where(SessionType.tutor_id == tutor_id)
        if active_only:
            stmt = stmt.where(SessionType.is_active.is_(True))
        stmt = stmt.order_by(SessionType.display_order.asc(), SessionType.price.asc())
        return list((await self.session.scalars(stmt)).all())

    async def get_session_type(self, session_type_id: UUID) -> SessionType | None:
        stmt = select(SessionType).where(SessionType.id == session_type_id)
        return await self.session.scalar(stmt)

    async def get_session_type_by_name(self, tutor_id: UUID, name: str) -> SessionType | None:
        stmt = select(SessionType).where(SessionType.tutor_id == tutor_id, SessionType.name == name)
        return await self.session.scalar(stmt)

    async def create_session_type(self, tutor_id: UUID, **values) -> SessionType:
        session_type = SessionType(tutor_id=tutor_id, **values)
        self.session.add(session_type)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("A session type with this name already exists for this tutor") from exc
        return session_type

    async def update_session_type(self, session_type: SessionType, **changes) -> SessionType:
        for key, value in changes.items():
            setattr(session_type, key, value)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("A session type with this name already exists for this tutor") from exc
        return session_type
