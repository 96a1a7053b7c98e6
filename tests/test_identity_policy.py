from __future__ import annotations

from uuid import uuid4

import pytest

from fakes import FakeIdentityRepository, FakeUser, principal_for
from tutormarket.core.enums import RoleEnum
from tutormarket.core.security import create_access_token
from tutormarket.modules.identity.service import IdentityService, principal_from_token
from tutormarket.shared.exceptions import AuthenticationException, NotFoundException, UnauthorizedException


@pytest.mark.asyncio
async def test_booking_for_self_returns_caller() -> None:
    user = FakeUser(id=uuid4())
    service = IdentityService(FakeIdentityRepository([user]))

    assert await service.ensure_can_book_for(principal_for(user), None) == user.id
    assert await service.ensure_can_book_for(principal_for(user), user.id) == user.id


@pytest.mark.asyncio
async def test_linked_child_account_cannot_book_even_without_flag() -> None:
    parent = FakeUser(id=uuid4(), role=RoleEnum.PARENT)
    child = FakeUser(id=uuid4())
    service = IdentityService(FakeIdentityRepository([parent, child], [(parent.id, child.id)]))

    with pytest.raises(UnauthorizedException, match="Child accounts"):
        await service.ensure_can_book_for(principal_for(child), None)


@pytest.mark.asyncio
async def test_parent_may_book_only_for_own_child() -> None:
    parent = FakeUser(id=uuid4(), role=RoleEnum.PARENT)
    child = FakeUser(id=uuid4(), is_child_managed=True)
    other_child = FakeUser(id=uuid4(), is_child_managed=True)
    service = IdentityService(
        FakeIdentityRepository([parent, child, other_child], [(parent.id, child.id)]),
    )

    assert await service.ensure_can_book_for(principal_for(parent), child.id) == child.id
    with pytest.raises(UnauthorizedException):
        await service.ensure_can_book_for(principal_for(parent), other_child.id)


@pytest.mark.asyncio
async def test_staff_may_book_for_existing_users() -> None:
    admin = FakeUser(id=uuid4(), role=RoleEnum.ADMIN)
    student = FakeUser(id=uuid4())
    service = IdentityService(FakeIdentityRepository([admin, student]))

    assert await service.ensure_can_book_for(principal_for(admin), student.id) == student.id
    with pytest.raises(NotFoundException):
        await service.ensure_can_book_for(principal_for(admin), uuid4())


@pytest.mark.asyncio
async def test_inactive_account_cannot_book() -> None:
    user = FakeUser(id=uuid4(), is_active=False)
    service = IdentityService(FakeIdentityRepository([user]))

    with pytest.raises(UnauthorizedException):
        await service.ensure_can_book_for(principal_for(user), None)


def test_principal_is_built_from_access_token_claims() -> None:
    user_id = uuid4()
    principal = principal_from_token(create_access_token(str(user_id), role=RoleEnum.OWNER.value))

    assert principal.id == user_id
    assert principal.role == RoleEnum.OWNER
    assert principal.is_staff


def test_refresh_token_is_not_accepted_as_access_token() -> None:
    token = create_access_token(str(uuid4()), role=RoleEnum.PERSONAL.value, type="refresh")

    with pytest.raises(AuthenticationException):
        principal_from_token(token)
