"""Idempotency-key stores (in-memory and Redis) and the replay helper."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any, Literal, Protocol

from tutormarket.core.config import Settings, get_settings
from tutormarket.shared.exceptions import ConflictException, IdempotencyKeyReuseException

logger = logging.getLogger(__name__)

RecordState = Literal["in_progress", "completed"]


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    """Stored state of one idempotency key."""

    fingerprint: str
    state: RecordState
    status_code: int | None = None
    body: str | None = None


class IdempotencyStore(Protocol):
    """Common contract for idempotency backends."""

    async def claim(self, key: str, fingerprint: str, *, ttl_seconds: int) -> IdempotencyRecord | None:
        """Atomically claim the key; return the existing record if already claimed."""

    async def complete(self, key: str, record: IdempotencyRecord, *, ttl_seconds: int) -> None:
        """Store the final response for a claimed key."""

    async def release(self, key: str) -> None:
        """Drop a claim so the caller can retry."""

    async def clear(self) -> None:
        """Drop every stored key (used in tests)."""


class InMemoryIdempotencyStore:
    """Process-local store with monotonic-clock expiry."""

    def __init__(self, now_provider: Callable[[], float] | None = None) -> None:
        self._records: dict[str, tuple[IdempotencyRecord, float]] = {}
        self._lock = asyncio.Lock()
        self._now = now_provider or time.monotonic

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._records.items() if expires_at <= now]
        for key in expired:
            del self._records[key]

    async def claim(self, key: str, fingerprint: str, *, ttl_seconds: int) -> IdempotencyRecord | None:
        now = self._now()
        async with self._lock:
            self._sweep(now)
            existing = self._records.get(key)
            if existing is not None:
                return existing[0]
            self._records[key] = (
                IdempotencyRecord(fingerprint=fingerprint, state="in_progress"),
                now + ttl_seconds,
            )
            return None

    async def complete(self, key: str, record: IdempotencyRecord, *, ttl_seconds: int) -> None:
        async with self._lock:
            self._records[key] = (record, self._now() + ttl_seconds)

    async def release(self, key: str) -> None:
        async with self._lock:
            self._records.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()


class RedisIdempotencyStore:
    """Redis-backed store shared across app instances (SET NX EX claims)."""

    def __init__(self, *, redis_url: str, namespace: str) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None

    def _build_storage_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def _ensure_initialized(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
        return self._client

    @staticmethod
    def _load(raw: str | None) -> IdempotencyRecord | None:
        if not raw:
            return None
        try:
            return IdempotencyRecord(**json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding malformed idempotency record")
            return None

    async def claim(self, key: str, fingerprint: str, *, ttl_seconds: int) -> IdempotencyRecord | None:
        client = await self._ensure_initialized()
        storage_key = self._build_storage_key(key)
        pending_record = IdempotencyRecord(fingerprint=fingerprint, state="in_progress")
        pending = json.dumps(asdict(pending_record))
        if await client.set(storage_key, pending, ex=ttl_seconds, nx=True):
            return None
        existing = self._load(await client.get(storage_key))
        if existing is not None:
            return existing
        # Expired or malformed between SET and GET; only one caller may take it over.
        if await client.set(storage_key, pending, ex=ttl_seconds, nx=True):
            return None
        return self._load(await client.get(storage_key)) or pending_record

    async def complete(self, key: str, record: IdempotencyRecord, *, ttl_seconds: int) -> None:
        client = await self._ensure_initialized()
        await client.set(self._build_storage_key(key), json.dumps(asdict(record)), ex=ttl_seconds)

    async def release(self, key: str) -> None:
        client = await self._ensure_initialized()
        await client.delete(self._build_storage_key(key))

    async def clear(self) -> None:
        client = await self._ensure_initialized()
        cursor: int = 0
        while True:
            cursor, keys = await client.scan(cursor=cursor, match=f"{self._namespace}:*", count=100)
            if keys:
                await client.delete(*keys)
            if int(cursor) == 0:
                break


_idempotency_store: IdempotencyStore | None = None
_idempotency_store_signature: tuple[str, str | None, str] | None = None


def _build_idempotency_store(settings: Settings) -> IdempotencyStore:
    if settings.idempotency_backend == "redis":
        return RedisIdempotencyStore(
            redis_url=settings.redis_url or "",
            namespace=settings.idempotency_redis_namespace,
        )
    return InMemoryIdempotencyStore()


def get_idempotency_store() -> IdempotencyStore:
    """Return shared store instance for configured backend."""
    global _idempotency_store, _idempotency_store_signature
    settings = get_settings()
    signature = (
        settings.idempotency_backend,
        settings.redis_url,
        settings.idempotency_redis_namespace,
    )
    if _idempotency_store is None or _idempotency_store_signature != signature:
        _idempotency_store = _build_idempotency_store(settings)
        _idempotency_store_signature = signature
    return _idempotency_store


def fingerprint_payload(payload: Mapping[str, Any]) -> str:
    """Stable hash of a request payload."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class IdempotentResult:
    status_code: int
    body: str
    replayed: bool


async def run_idempotent(
    store: IdempotencyStore,
    *,
    key: str,
    fingerprint: str,
    ttl_seconds: int,
    claim_ttl_seconds: int | None = None,
    action: Callable[[], Awaitable[tuple[int, str]]],
) -> IdempotentResult:
    """Execute action once per key and replay its stored response afterwards.

    Only successful responses are stored. When the action raises, the claim is
    released and the exception propagates, so the client may retry with the
    same key. The in-progress claim lives for ``claim_ttl_seconds`` so a
    crashed worker does not lock the key for the full response TTL.
    """
    claim_ttl = min(claim_ttl_seconds or ttl_seconds, ttl_seconds)
    existing = await store.claim(key, fingerprint, ttl_seconds=claim_ttl)
    if existing is not None:
        if existing.fingerprint != fingerprint:
            raise IdempotencyKeyReuseException(
                "Idempotency-Key was already used with a different request payload",
            )
        if existing.state != "completed" or existing.body is None:
            raise ConflictException("A request with this Idempotency-Key is still in progress")
        return IdempotentResult(
            status_code=existing.status_code or 200,
            body=existing.body,
            replayed=True,
        )

    try:
        status_code, body = await action()
    except BaseException:
        await store.release(key)
        raise

    if 200 <= status_code < 300:
        await store.complete(
            key,
            IdempotencyRecord(
                fingerprint=fingerprint,
                state="completed",
                status_code=status_code,
                body=body,
            ),
            ttl_seconds=ttl_seconds,
        )
    else:
        await store.release(key)
    return IdempotentResult(status_code=status_code, body=body, replayed=False)
