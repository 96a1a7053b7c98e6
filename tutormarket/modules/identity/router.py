"""Identity API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tutormarket.modules.identity.schemas import UserRead
from tutormarket.modules.identity.service import (
    IdentityService,
    Principal,
    get_current_principal,
    get_identity_service,
)

router = APIRouter(prefix="/identity", tags=["identity"])


@router.get("/users/me", response_model=UserRead)
async def get_me(
    principal: Principal = Depends(get_current_principal),
    service: IdentityService = Depends(get_identity_service),
) -> UserRead:
    """Return the account record of the authenticated caller."""
    user = await service.get_user(principal.id)
    return UserRead.model_validate(user)
