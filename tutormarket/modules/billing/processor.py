"""Payment processor boundary and its Stripe implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any, Protocol

import stripe
from starlette.concurrency import run_in_threadpool

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.metrics import WEBHOOK_SIGNATURE_FAILURES_TOTAL
from tutormarket.shared.exceptions import (
    PaymentProviderException,
    ServiceUnavailableException,
    SignatureVerificationException,
)
from tutormarket.shared.utils import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)


class ProcessorEventType(StrEnum):
    """Normalized processor notification kinds."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    OTHER = "other"


STRIPE_EVENT_TYPES = {
    "payment_intent.succeeded": ProcessorEventType.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": ProcessorEventType.PAYMENT_FAILED,
    "charge.refunded": ProcessorEventType.REFUNDED,
}


@dataclass(frozen=True, slots=True)
class Reservation:
    reservation_id: str
    client_secret: str | None
    status: str


@dataclass(frozen=True, slots=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class ProcessorEvent:
    """Verified notification reduced to what settlement needs."""

    event_id: str
    event_type: ProcessorEventType
    raw_type: str
    reservation_id: str | None = None
    failure_reason: str | None = None
    amount_refunded: Decimal | None = None
    fully_refunded: bool = False


class PaymentProcessor(Protocol):
    """Capabilities the booking pipeline needs from a payment processor."""

    name: str

    async def create_reservation(
        self,
        *,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> Reservation:
        """Open a hold of funds and return its handle."""

    def verify_and_parse_event(self, payload: bytes, signature_header: str | None) -> ProcessorEvent:
        """Verify the signature of a raw notification and normalize it."""

    async def issue_refund(
        self,
        *,
        reservation_id: str,
        amount: Decimal,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        """Refund part or all of a settled reservation."""

    async def cancel_reservation(self, reservation_id: str) -> None:
        """Release a reservation that will never be used."""


def _translate_stripe_error(exc: stripe.StripeError, action: str) -> Exception:
    if isinstance(exc, (stripe.CardError, stripe.InvalidRequestError, stripe.IdempotencyError)):
        message = exc.user_message or str(exc) or f"Payment processor rejected the {action}"
        return PaymentProviderException(message)
    logger.error("Payment processor unavailable during %s: %s", action, exc)
    return ServiceUnavailableException("Payment service is temporarily unavailable")


class StripePaymentProcessor:
    """Stripe PaymentIntents, Refunds and signed webhooks."""

    name = "stripe"

    def __init__(
        self,
        *,
        secret_key: str | None,
        webhook_secret: str | None,
        timeout_seconds: float,
        max_retries: int,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        if secret_key:
            stripe.api_key = secret_key
            stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
            stripe.max_network_retries = max_retries
        else:
            logger.warning("Stripe secret key not configured; payment calls will be refused")

    def _ensure_configured(self) -> str:
        if not self._secret_key:
            raise ServiceUnavailableException("Payment service is not configured")
        return self._secret_key

    async def create_reservation(
        self,
        *,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> Reservation:
        api_key = self._ensure_configured()
        try:
            intent = await run_in_threadpool(
                stripe.PaymentIntent.create,
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata=dict(metadata),
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=api_key,
            )
        except stripe.StripeError as exc:
            raise _translate_stripe_error(exc, "payment reservation") from exc
        return Reservation(
            reservation_id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=getattr(intent, "status", None) or "unknown",
        )

    def verify_and_parse_event(self, payload: bytes, signature_header: str | None) -> ProcessorEvent:
        if not self._webhook_secret:
            raise ServiceUnavailableException("Webhook secret is not configured")
        if not signature_header:
            WEBHOOK_SIGNATURE_FAILURES_TOTAL.inc()
            logger.warning("Webhook rejected: missing signature header")
            raise SignatureVerificationException("Missing webhook signature")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature_header,
                self._webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as exc:
            WEBHOOK_SIGNATURE_FAILURES_TOTAL.inc()
            logger.warning("Webhook rejected: invalid signature: %s", exc)
            raise SignatureVerificationException("Invalid webhook signature") from exc
        except UnicodeDecodeError as exc:
            logger.warning("Webhook rejected: payload is not UTF-8")
            raise SignatureVerificationException("Invalid webhook payload") from exc

        try:
            event = json.loads(body)
        except ValueError as exc:
            logger.warning("Webhook rejected: malformed payload: %s", exc)
            raise SignatureVerificationException("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise SignatureVerificationException("Invalid webhook payload")
        return parse_stripe_event(event)

    async def issue_refund(
        self,
        *,
        reservation_id: str,
        amount: Decimal,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        api_key = self._ensure_configured()
        try:
            refund = await run_in_threadpool(
                stripe.Refund.create,
                payment_intent=reservation_id,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
                api_key=api_key,
            )
        except stripe.StripeError as exc:
            raise _translate_stripe_error(exc, "refund") from exc
        refunded_cents = getattr(refund, "amount", None)
        return RefundResult(
            refund_id=refund.id,
            status=getattr(refund, "status", None) or "pending",
            amount=from_minor_units(int(refunded_cents)) if refunded_cents is not None else amount,
        )

    async def cancel_reservation(self, reservation_id: str) -> None:
        api_key = self._ensure_configured()
        try:
            await run_in_threadpool(stripe.PaymentIntent.cancel, reservation_id, api_key=api_key)
        except stripe.StripeError as exc:
            raise _translate_stripe_error(exc, "reservation cancel") from exc


def parse_stripe_event(event: Mapping[str, Any]) -> ProcessorEvent:
    """Reduce a verified Stripe event to a ProcessorEvent."""
    raw_type = str(event.get("type", ""))
    event_type = STRIPE_EVENT_TYPES.get(raw_type, ProcessorEventType.OTHER)
    data_object = (event.get("data") or {}).get("object") or {}

    if event_type in (ProcessorEventType.PAYMENT_SUCCEEDED, ProcessorEventType.PAYMENT_FAILED):
        failure_reason = None
        if event_type == ProcessorEventType.PAYMENT_FAILED:
            last_error = data_object.get("last_payment_error") or {}
            failure_reason = last_error.get("message") or "Payment failed"
        return ProcessorEvent(
            event_id=str(event.get("id", "")),
            event_type=event_type,
            raw_type=raw_type,
            reservation_id=data_object.get("id"),
            failure_reason=failure_reason,
        )

    if event_type == ProcessorEventType.REFUNDED:
        amount = int(data_object.get("amount") or 0)
        amount_refunded = int(data_object.get("amount_refunded") or 0)
        return ProcessorEvent(
            event_id=str(event.get("id", "")),
            event_type=event_type,
            raw_type=raw_type,
            reservation_id=data_object.get("payment_intent"),
            amount_refunded=from_minor_units(amount_refunded),
            fully_refunded=bool(data_object.get("refunded")) or (amount > 0 and amount_refunded >= amount),
        )

    return ProcessorEvent(event_id=str(event.get("id", "")), event_type=event_type, raw_type=raw_type)


_processor: PaymentProcessor | None = None
_processor_signature: tuple[str | None, str | None, float, int] | None = None


def _secret(value: Any) -> str | None:
    if value is None:
        return None
    return value.get_secret_value() or None


def build_payment_processor(settings: Settings) -> PaymentProcessor:
    return StripePaymentProcessor(
        secret_key=_secret(settings.stripe_secret_key),
        webhook_secret=_secret(settings.stripe_webhook_secret),
        timeout_seconds=settings.payment_processor_timeout_seconds,
        max_retries=settings.payment_processor_max_retries,
    )


def get_payment_processor() -> PaymentProcessor:
    """Return shared processor instance for the configured credentials."""
    global _processor, _processor_signature
    settings = get_settings()
    signature = (
        _secret(settings.stripe_secret_key),
        _secret(settings.stripe_webhook_secret),
        settings.payment_processor_timeout_seconds,
        settings.payment_processor_max_retries,
    )
    if _processor is None or _processor_signature != signature:
        _processor = build_payment_processor(settings)
        _processor_signature = signature
    return _processor
