"""Audit business logic layer."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.modules.audit.models import AuditLog, OutboxEvent
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.identity.service import Principal
from tutormarket.shared.exceptions import UnauthorizedException


class AuditService:
    """Read access to the audit trail and outbox."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    async def list_logs(
        self,
        actor: Principal,
        limit: int,
        offset: int,
        entity_type: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        """List audit logs (admin only)."""
        if not actor.is_staff:
            raise UnauthorizedException("Only admin can view audit logs")
        return await self.repository.list_audit_logs(limit=limit, offset=offset, entity_type=entity_type)

    async def list_pending_outbox(self, actor: Principal, limit: int) -> list[OutboxEvent]:
        """List pending outbox events (admin only)."""
        if not actor.is_staff:
            raise UnauthorizedException("Only admin can view outbox")
        return await self.repository.list_pending_outbox(limit)


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    """Dependency provider for audit service."""
    return AuditService(AuditRepository(session))
