"""Audit API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tutormarket.modules.audit.schemas import AuditLogRead, OutboxEventRead
from tutormarket.modules.audit.service import AuditService, get_audit_service
from tutormarket.modules.identity.service import Principal, get_current_principal
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    entity_type: str | None = Query(default=None, max_length=128),
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[AuditLogRead]:
    """List audit logs."""
    items, total = await service.list_logs(principal, pagination.limit, pagination.offset, entity_type)
    serialized = [AuditLogRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/outbox/pending", response_model=list[OutboxEventRead])
async def list_pending_outbox(
    limit: int = Query(default=100, ge=1, le=500),
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> list[OutboxEventRead]:
    """List pending outbox events."""
    items = await service.list_pending_outbox(principal, limit=limit)
    return [OutboxEventRead.model_validate(item) for item in items]
