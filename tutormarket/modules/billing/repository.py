"""Billing repository layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.enums import TransactionStatusEnum, TransactionTypeEnum
from tutormarket.core.transitions import TRANSACTION_TRANSITIONS, ensure_transition
from tutormarket.modules.billing.models import PaymentTransaction

HOLDING_STATUSES = (TransactionStatusEnum.PENDING, TransactionStatusEnum.FAILED)


class BillingRepository:
    """DB access methods for billing."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def create_transaction(self, **values: Any) -> PaymentTransaction:
        transaction = PaymentTransaction(**values)
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def get_transaction(self, transaction_id: UUID) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(PaymentTransaction.id == transaction_id)
        return await self.session.scalar(stmt)

    async def lock_transaction(self, transaction_id: UUID) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(PaymentTransaction.id == transaction_id).with_for_update()
        return await self.session.scalar(stmt)

    async def get_by_provider_id(self, provider_transaction_id: str) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.provider_transaction_id == provider_transaction_id,
        )
        return await self.session.scalar(stmt)

    async def lock_by_provider_id(self, provider_transaction_id: str) -> PaymentTransaction | None:
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.provider_transaction_id == provider_transaction_id)
            .with_for_update()
        )
        return await self.session.scalar(stmt)

    async def list_live_holds(self, tutor_id: UUID, now: datetime) -> list[PaymentTransaction]:
        """Unsettled purchases whose slot claim has not expired yet."""
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.tutor_id == tutor_id,
            PaymentTransaction.transaction_type == TransactionTypeEnum.PURCHASE,
            PaymentTransaction.status.in_(HOLDING_STATUSES),
            PaymentTransaction.hold_expires_at.is_not(None),
            PaymentTransaction.hold_expires_at > now,
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_reconciliation_required(
        self,
        limit: int,
        offset: int,
    ) -> tuple[list[PaymentTransaction], int]:
        base_stmt: Select[tuple[PaymentTransaction]] = select(PaymentTransaction).where(
            PaymentTransaction.reconciliation_required.is_(True),
        )
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(PaymentTransaction.completed_at.asc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def set_transaction_status(
        self,
        transaction: PaymentTransaction,
        status: TransactionStatusEnum,
        **changes: Any,
    ) -> PaymentTransaction:
        ensure_transition(TRANSACTION_TRANSITIONS, transaction.status, status, entity="transaction")
        transaction.status = status
        for key, value in changes.items():
            setattr(transaction, key, value)
        await self.session.flush()
        return transaction

    async def update_transaction(self, transaction: PaymentTransaction, **changes: Any) -> PaymentTransaction:
        for key, value in changes.items():
            setattr(transaction, key, value)
        await self.session.flush()
        return transaction
