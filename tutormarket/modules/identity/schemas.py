"""Identity schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from tutormarket.core.enums import RoleEnum


class UserRead(BaseModel):
    """User output schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    role: RoleEnum
    is_active: bool
    is_child_managed: bool
    created_at: datetime
    updated_at: datetime
