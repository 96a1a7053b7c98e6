"""Sliding-window request budgets for payment actions.

Each payment action (reservation intake, refunds) has a budget per subject,
where a subject is an authenticated principal or a client address. Budgets
are tracked in process memory or in a Redis sorted set shared by all API
instances.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol
from uuid import uuid4

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.metrics import PAYMENT_RATE_LIMITED_TOTAL
from tutormarket.shared.exceptions import RateLimitException

PaymentAction = Literal["payment-intent", "refund"]


@dataclass(frozen=True, slots=True)
class LimitRule:
    """Budget of one payment action."""

    action: str
    max_requests: int
    window_seconds: int

    def key_for(self, subject: str) -> str:
        return f"payments:{self.action}:{subject}"


@dataclass(frozen=True, slots=True)
class LimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


def payment_rule(action: PaymentAction, settings: Settings) -> LimitRule:
    """Build the budget of a payment action from settings."""
    max_requests = {
        "payment-intent": settings.payment_rate_limit_intent_requests,
        "refund": settings.payment_rate_limit_refund_requests,
    }[action]
    return LimitRule(
        action=action,
        max_requests=max_requests,
        window_seconds=settings.payment_rate_limit_window_seconds,
    )


class RateLimiter(Protocol):
    """Common contract for budget backends."""

    async def hit(self, key: str, rule: LimitRule) -> LimitDecision:
        """Spend one request of the budget if any is left."""

    async def clear(self) -> None:
        """Forget every tracked budget (used in tests)."""


def _seconds_until_slot_frees(oldest_hit: float, window_seconds: int, now: float) -> int:
    return max(1, math.ceil(oldest_hit + window_seconds - now))


class InMemoryRateLimiter:
    """Per-process budgets over a deque of hit timestamps."""

    def __init__(self, now_provider: Callable[[], float] | None = None) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._now = now_provider or time.monotonic

    async def hit(self, key: str, rule: LimitRule) -> LimitDecision:
        now = self._now()
        async with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - rule.window_seconds:
                hits.popleft()
            if len(hits) >= rule.max_requests:
                return LimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=_seconds_until_slot_frees(hits[0], rule.window_seconds, now),
                )
            hits.append(now)
            return LimitDecision(allowed=True, remaining=rule.max_requests - len(hits))

    async def clear(self) -> None:
        async with self._lock:
            self._hits.clear()


# Returns {allowed, remaining, oldest_hit_score}.
_REDIS_HIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local used = redis.call('ZCARD', key)
if used >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, 0, oldest[2] or tostring(now)}
end

redis.call('ZADD', key, now, ARGV[4])
redis.call('EXPIRE', key, math.ceil(window))
return {1, limit - used - 1, '0'}
"""


class RedisRateLimiter:
    """Budgets kept in Redis sorted sets, scored by hit time."""

    def __init__(
        self,
        *,
        redis_url: str,
        namespace: str,
        now_provider: Callable[[], float] | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._now = now_provider or time.time
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None
        self._script: Any | None = None

    async def _ensure_initialized(self) -> None:
        if self._script is not None:
            return
        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(self._redis_url, encoding="utf-8", decode_responses=True)
            if self._script is None:
                self._script = self._client.register_script(_REDIS_HIT_SCRIPT)

    async def hit(self, key: str, rule: LimitRule) -> LimitDecision:
        await self._ensure_initialized()
        now = self._now()
        allowed, remaining, oldest = await self._script(
            keys=[f"{self._namespace}:{key}"],
            args=[now, rule.window_seconds, rule.max_requests, f"{now}:{uuid4().hex}"],
        )
        if int(allowed):
            return LimitDecision(allowed=True, remaining=int(remaining))
        return LimitDecision(
            allowed=False,
            remaining=0,
            retry_after=_seconds_until_slot_frees(float(oldest), rule.window_seconds, now),
        )

    async def clear(self) -> None:
        await self._ensure_initialized()
        cursor: int = 0
        while True:
            cursor, keys = await self._client.scan(cursor=cursor, match=f"{self._namespace}:*", count=100)
            if keys:
                await self._client.delete(*keys)
            if int(cursor) == 0:
                break


async def spend_budget(limiter: RateLimiter, rule: LimitRule, subject: str) -> LimitDecision:
    """Spend one request for subject; raise 429 with Retry-After when exhausted."""
    decision = await limiter.hit(rule.key_for(subject), rule)
    if not decision.allowed:
        PAYMENT_RATE_LIMITED_TOTAL.labels(action=rule.action).inc()
        raise RateLimitException(
            f"Too many {rule.action} requests. Try again in {decision.retry_after} second(s).",
            retry_after=decision.retry_after,
        )
    return decision


_rate_limiter: RateLimiter | None = None
_rate_limiter_signature: tuple[str, str | None, str] | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the limiter for the configured backend, rebuilt when settings change."""
    global _rate_limiter, _rate_limiter_signature
    settings = get_settings()
    signature = (
        settings.payment_rate_limit_backend,
        settings.redis_url,
        settings.payment_rate_limit_redis_namespace,
    )
    if _rate_limiter is None or _rate_limiter_signature != signature:
        if settings.payment_rate_limit_backend == "redis":
            _rate_limiter = RedisRateLimiter(
                redis_url=settings.redis_url or "",
                namespace=settings.payment_rate_limit_redis_namespace,
            )
        else:
            _rate_limiter = InMemoryRateLimiter()
        _rate_limiter_signature = signature
    return _rate_limiter
