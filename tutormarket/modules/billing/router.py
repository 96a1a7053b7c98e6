"""Billing API router."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, Response, status

from tutormarket.core.config import get_settings
from tutormarket.core.idempotency import (
    IdempotencyStore,
    fingerprint_payload,
    get_idempotency_store,
    run_idempotent,
)
from tutormarket.modules.billing.processor import PaymentProcessor, get_payment_processor
from tutormarket.modules.billing.rate_limit import (
    enforce_payment_intent_rate_limit,
    enforce_refund_rate_limit,
)
from tutormarket.modules.billing.schemas import (
    CancellationRead,
    CreatePaymentIntentRequest,
    MaterializeResult,
    PaymentIntentRead,
    QuoteRead,
    QuoteRequest,
    RefundRequest,
    TransactionRead,
    WebhookAck,
)
from tutormarket.modules.billing.service import (
    ReservationService,
    SettlementService,
    get_reservation_service,
    get_settlement_service,
)
from tutormarket.modules.booking.service import BookingService, get_booking_service
from tutormarket.modules.identity.service import Principal, get_current_principal
from tutormarket.shared.exceptions import ValidationException
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["billing"])

MAX_IDEMPOTENCY_KEY_LENGTH = 255


@router.post("/quote", response_model=QuoteRead)
async def quote(
    payload: QuoteRequest,
    service: ReservationService = Depends(get_reservation_service),
) -> QuoteRead:
    """Compute the server-side price of a booking request."""
    return await service.quote(payload)


@router.post(
    "/create-payment-intent",
    response_model=PaymentIntentRead,
    dependencies=[Depends(enforce_payment_intent_rate_limit)],
)
async def create_payment_intent(
    payload: CreatePaymentIntentRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: ReservationService = Depends(get_reservation_service),
    principal: Principal = Depends(get_current_principal),
    store: IdempotencyStore = Depends(get_idempotency_store),
) -> Response:
    """Reserve funds for a booking request; replays return the first response."""
    key = (idempotency_key or "").strip()
    if not key:
        raise ValidationException("Idempotency-Key header is required")
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationException("Idempotency-Key header is too long")

    async def _reserve() -> tuple[int, str]:
        reservation = await service.reserve(principal, payload, key)
        return status.HTTP_200_OK, reservation.model_dump_json()

    settings = get_settings()
    result = await run_idempotent(
        store,
        key=f"create-payment-intent:{principal.id}:{key}",
        fingerprint=fingerprint_payload(payload.model_dump(mode="json")),
        ttl_seconds=settings.idempotency_ttl_seconds,
        claim_ttl_seconds=settings.idempotency_claim_ttl_seconds,
        action=_reserve,
    )
    if result.replayed:
        logger.info("Replayed payment intent response for principal %s", principal.id)
    return Response(content=result.body, status_code=result.status_code, media_type="application/json")


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    processor: PaymentProcessor = Depends(get_payment_processor),
    service: SettlementService = Depends(get_settlement_service),
) -> WebhookAck:
    """Receive signed payment processor notifications."""
    payload = await request.body()
    event = processor.verify_and_parse_event(payload, stripe_signature)
    outcome = await service.handle(event)
    return WebhookAck(event_type=event.raw_type, outcome=outcome)


@router.post(
    "/refund",
    response_model=CancellationRead,
    dependencies=[Depends(enforce_refund_rate_limit)],
)
async def refund_booking(
    payload: RefundRequest,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> CancellationRead:
    """Cancel a booking and refund it according to the refund policy."""
    return await service.cancel_booking(payload.booking_id, principal, payload.reason)


@router.get("/reconciliation", response_model=Page[TransactionRead])
async def list_reconciliation(
    pagination=Depends(get_pagination_params),
    service: SettlementService = Depends(get_settlement_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[TransactionRead]:
    """List paid transactions whose bookings could not be created (admin)."""
    items, total = await service.list_reconciliation(
        principal,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    serialized = [TransactionRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.post("/transactions/{transaction_id}/materialize", response_model=MaterializeResult)
async def materialize_transaction(
    transaction_id: UUID,
    service: SettlementService = Depends(get_settlement_service),
    principal: Principal = Depends(get_current_principal),
) -> MaterializeResult:
    """Retry booking creation for a paid transaction (admin)."""
    booking_ids = await service.rematerialize(transaction_id, principal)
    return MaterializeResult(transaction_id=transaction_id, booking_ids=booking_ids)
