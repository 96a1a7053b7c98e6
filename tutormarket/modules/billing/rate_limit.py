"""Rate-limit dependencies for payment endpoints."""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Depends, Request

from tutormarket.core.config import get_settings
from tutormarket.core.rate_limit import PaymentAction, get_rate_limiter, payment_rule, spend_budget
from tutormarket.core.security import bearer_scheme
from tutormarket.modules.identity.service import principal_from_token
from tutormarket.shared.exceptions import AppException


def _trusted_proxy_ips(raw_value: object) -> set[str]:
    if raw_value is None:
        return set()
    if isinstance(raw_value, str):
        values: Iterable[object] = raw_value.split(",")
    elif isinstance(raw_value, tuple | list | set | frozenset):
        values = raw_value
    else:
        return set()

    return {str(value).strip() for value in values if str(value).strip()}


def _resolve_client_ip(request: Request, *, trusted_proxy_ips: set[str]) -> str:
    client_ip = "unknown"
    if request.client and request.client.host:
        client_ip = request.client.host

    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for:
        return client_ip
    if client_ip not in trusted_proxy_ips:
        return client_ip

    forwarded_client = forwarded_for.split(",")[0].strip()
    return forwarded_client or client_ip


def _resolve_subject(request: Request, credentials) -> str:
    """Limit per authenticated principal, falling back to the client address."""
    if credentials is not None and credentials.credentials:
        try:
            return f"user:{principal_from_token(credentials.credentials).id}"
        except AppException:
            pass
    settings = get_settings()
    resolved_ip = _resolve_client_ip(
        request,
        trusted_proxy_ips=_trusted_proxy_ips(settings.payment_rate_limit_trusted_proxy_ips),
    )
    return f"ip:{resolved_ip}"


async def _enforce_limit(request: Request, credentials, action: PaymentAction) -> None:
    rule = payment_rule(action, get_settings())
    await spend_budget(get_rate_limiter(), rule, _resolve_subject(request, credentials))


async def enforce_payment_intent_rate_limit(
    request: Request,
    credentials=Depends(bearer_scheme),
) -> None:
    """Apply rate limit for reservation intake."""
    await _enforce_limit(request, credentials, "payment-intent")


async def enforce_refund_rate_limit(
    request: Request,
    credentials=Depends(bearer_scheme),
) -> None:
    """Apply rate limit for refunds and cancellations."""
    await _enforce_limit(request, credentials, "refund")
