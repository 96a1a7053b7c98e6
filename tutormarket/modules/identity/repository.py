"""Identity repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.modules.identity.models import User, UserRelationship


class IdentityRepository:
    """DB operations for identity domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        stmt = select(User).where(User.id == user_id)
        return await self.session.scalar(stmt)

    async def has_parent(self, child_user_id: UUID) -> bool:
        stmt = select(exists().where(UserRelationship.child_user_id == child_user_id))
        return bool(await self.session.scalar(stmt))

    async def is_parent_of(self, parent_user_id: UUID, child_user_id: UUID) -> bool:
        stmt = select(
            exists().where(
                UserRelationship.parent_user_id == parent_user_id,
                UserRelationship.child_user_id == child_user_id,
            ),
        )
        return bool(await self.session.scalar(stmt))
