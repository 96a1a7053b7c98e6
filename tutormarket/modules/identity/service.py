"""Identity business logic layer."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.core.enums import STAFF_ROLES, RoleEnum
from tutormarket.core.security import bearer_scheme, decode_token
from tutormarket.modules.identity.models import User
from tutormarket.modules.identity.repository import IdentityRepository
from tutormarket.shared.exceptions import (
    AuthenticationException,
    NotFoundException,
    UnauthorizedException,
)


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as asserted by the bearer token."""

    id: UUID
    role: RoleEnum

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class IdentityService:
    """Identity domain service."""

    def __init__(self, repository: IdentityRepository) -> None:
        self.repository = repository

    async def get_user(self, user_id: UUID) -> User:
        user = await self.repository.get_user_by_id(user_id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    async def is_child_account(self, user: User) -> bool:
        if user.is_child_managed:
            return True
        return await self.repository.has_parent(user.id)

    async def ensure_can_book_for(self, principal: Principal, student_id: UUID | None) -> UUID:
        """Return the student the booking is for, or raise when the caller may not book it.

        Child-managed accounts may not book at all. Parents may book for
        themselves or a linked child; admin and owner may book for anyone.
        """
        booker = await self.repository.get_user_by_id(principal.id)
        if booker is None or not booker.is_active:
            raise UnauthorizedException("Account is not allowed to book sessions")

        if await self.is_child_account(booker):
            raise UnauthorizedException(
                "Child accounts cannot book tutoring sessions. Please ask your parent to book for you.",
            )

        if student_id is None or student_id == principal.id:
            return principal.id

        if principal.is_staff:
            student = await self.repository.get_user_by_id(student_id)
            if student is None:
                raise NotFoundException("Student not found")
            return student_id

        if principal.role == RoleEnum.PARENT and await self.repository.is_parent_of(
            principal.id,
            student_id,
        ):
            return student_id

        raise UnauthorizedException("You can only book sessions for yourself or your children.")


async def get_identity_service(session: AsyncSession = Depends(get_db_session)) -> IdentityService:
    """Dependency to provide identity service."""
    return IdentityService(IdentityRepository(session))


def principal_from_token(token: str) -> Principal:
    """Build principal from the `sub` and `role` claims of an access token."""
    payload = decode_token(token)
    if payload.get("type", "access") != "access":
        raise AuthenticationException("Invalid access token")

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        raise AuthenticationException("Token subject or role is missing")

    try:
        return Principal(id=UUID(str(subject)), role=RoleEnum(str(role)))
    except ValueError as exc:
        raise AuthenticationException("Token claims are malformed") from exc


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Resolve currently authenticated caller from bearer token."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationException("Not authenticated")
    return principal_from_token(credentials.credentials)


def require_roles(*roles: RoleEnum):
    """Dependency factory for role-based access."""

    async def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise UnauthorizedException("Operation not permitted for your role")
        return principal

    return _checker
