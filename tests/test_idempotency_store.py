from __future__ import annotations

import asyncio
import json

import pytest

from tutormarket.core.idempotency import (
    InMemoryIdempotencyStore,
    IdempotencyRecord,
    RedisIdempotencyStore,
    fingerprint_payload,
    run_idempotent,
)
from tutormarket.shared.exceptions import ConflictException, IdempotencyKeyReuseException


class CountingAction:
    def __init__(self, status_code: int = 200, error: Exception | None = None) -> None:
        self.calls = 0
        self.status_code = status_code
        self.error = error

    async def __call__(self) -> tuple[int, str]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.status_code, json.dumps({"payment_intent_id": f"pi_{self.calls}"})


def test_fingerprint_ignores_key_order() -> None:
    assert fingerprint_payload({"a": 1, "b": "x"}) == fingerprint_payload({"b": "x", "a": 1})
    assert fingerprint_payload({"a": 1}) != fingerprint_payload({"a": 2})


@pytest.mark.asyncio
async def test_replay_returns_byte_identical_response_without_rerunning() -> None:
    store = InMemoryIdempotencyStore()
    action = CountingAction()

    first = await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=action)
    second = await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=action)

    assert action.calls == 1
    assert first.replayed is False
    assert second.replayed is True
    assert second.body == first.body
    assert second.status_code == 200


@pytest.mark.asyncio
async def test_same_key_with_different_payload_is_rejected() -> None:
    store = InMemoryIdempotencyStore()
    action = CountingAction()
    await run_idempotent(store, key="k1", fingerprint="f1", ttl_seconds=60, action=action)

    with pytest.raises(IdempotencyKeyReuseException) as exc:
        await run_idempotent(store, key="k1", fingerprint="f2", ttl_seconds=60, action=action)

    assert exc.value.status_code == 422
    assert action.calls == 1


@pytest.mark.asyncio
async def test_key_still_in_progress_is_a_conflict() -> None:
    store = InMemoryIdempotencyStore()
    await store.claim("k1", "f", ttl_seconds=60)

    with pytest.raises(ConflictException):
        await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=CountingAction())


@pytest.mark.asyncio
async def test_failed_action_releases_key_for_retry() -> None:
    store = InMemoryIdempotencyStore()
    failing = CountingAction(error=RuntimeError("processor down"))

    with pytest.raises(RuntimeError):
        await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=failing)

    retry = CountingAction()
    result = await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=retry)
    assert retry.calls == 1
    assert result.replayed is False


@pytest.mark.asyncio
async def test_non_success_response_is_not_stored() -> None:
    store = InMemoryIdempotencyStore()
    action = CountingAction(status_code=409)

    await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=action)
    await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=action)

    assert action.calls == 2


@pytest.mark.asyncio
async def test_records_expire_after_ttl() -> None:
    now_point = [100.0]
    store = InMemoryIdempotencyStore(now_provider=lambda: now_point[0])
    await store.complete(
        "k1",
        IdempotencyRecord(fingerprint="f", state="completed", status_code=200, body="{}"),
        ttl_seconds=10,
    )

    assert await store.claim("k1", "f", ttl_seconds=10) is not None
    now_point[0] = 111.0
    assert await store.claim("k1", "f", ttl_seconds=10) is None


@pytest.mark.asyncio
async def test_concurrent_requests_with_same_key_run_action_once() -> None:
    store = InMemoryIdempotencyStore()
    started = asyncio.Event()
    proceed = asyncio.Event()
    calls = 0

    async def slow_reservation() -> tuple[int, str]:
        nonlocal calls
        calls += 1
        started.set()
        await proceed.wait()
        return 200, json.dumps({"payment_intent_id": "pi_1"})

    async def duplicate_request() -> None:
        await started.wait()
        try:
            await run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=slow_reservation)
        finally:
            proceed.set()

    first, second = await asyncio.gather(
        run_idempotent(store, key="k1", fingerprint="f", ttl_seconds=60, action=slow_reservation),
        duplicate_request(),
        return_exceptions=True,
    )

    assert calls == 1
    assert first.replayed is False
    assert isinstance(second, ConflictException)


class TtlRecordingStore(InMemoryIdempotencyStore):
    def __init__(self) -> None:
        super().__init__()
        self.claim_ttls: list[int] = []
        self.complete_ttls: list[int] = []

    async def claim(self, key: str, fingerprint: str, *, ttl_seconds: int) -> IdempotencyRecord | None:
        self.claim_ttls.append(ttl_seconds)
        return await super().claim(key, fingerprint, ttl_seconds=ttl_seconds)

    async def complete(self, key: str, record: IdempotencyRecord, *, ttl_seconds: int) -> None:
        self.complete_ttls.append(ttl_seconds)
        await super().complete(key, record, ttl_seconds=ttl_seconds)


@pytest.mark.asyncio
async def test_in_progress_claim_uses_short_ttl_and_response_keeps_full_ttl() -> None:
    store = TtlRecordingStore()

    await run_idempotent(
        store,
        key="k1",
        fingerprint="f",
        ttl_seconds=86400,
        claim_ttl_seconds=60,
        action=CountingAction(),
    )

    assert store.claim_ttls == [60]
    assert store.complete_ttls == [86400]


@pytest.mark.asyncio
async def test_abandoned_claim_frees_key_after_claim_ttl() -> None:
    now_point = [100.0]
    store = InMemoryIdempotencyStore(now_provider=lambda: now_point[0])
    # A worker that died after claiming never completes or releases the key.
    await store.claim("k1", "f", ttl_seconds=60)

    now_point[0] = 161.0
    retry = CountingAction()
    result = await run_idempotent(
        store,
        key="k1",
        fingerprint="f",
        ttl_seconds=86400,
        claim_ttl_seconds=60,
        action=retry,
    )

    assert retry.calls == 1
    assert result.replayed is False


class ScriptedRedis:
    """Answers SET NX and GET from queued results."""

    def __init__(self, set_results: list[bool], get_results: list[str | None]) -> None:
        self.set_results = set_results
        self.get_results = get_results
        self.set_calls: list[dict] = []

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        self.set_calls.append({"key": key, "ex": ex, "nx": nx})
        return self.set_results.pop(0)

    async def get(self, key: str) -> str | None:
        return self.get_results.pop(0)


def _redis_store(client: ScriptedRedis) -> RedisIdempotencyStore:
    store = RedisIdempotencyStore(redis_url="redis://localhost:6379/0", namespace="idempotency")
    store._client = client
    return store


@pytest.mark.asyncio
async def test_redis_takeover_of_vanished_key_is_conditional() -> None:
    client = ScriptedRedis(set_results=[False, True], get_results=[None])

    assert await _redis_store(client).claim("k1", "f", ttl_seconds=60) is None
    assert [call["nx"] for call in client.set_calls] == [True, True]


@pytest.mark.asyncio
async def test_redis_takeover_lost_to_other_caller_reports_in_progress() -> None:
    client = ScriptedRedis(set_results=[False, False], get_results=[None, None])

    record = await _redis_store(client).claim("k1", "f", ttl_seconds=60)

    assert record is not None
    assert record.state == "in_progress"
    assert all(call["nx"] for call in client.set_calls)
    with pytest.raises(ConflictException):
        await run_idempotent(
            _redis_store(ScriptedRedis(set_results=[False, False], get_results=[None, None])),
            key="k1",
            fingerprint="f",
            ttl_seconds=60,
            action=CountingAction(),
        )
