"""Unit tests for the in-memory counter store adapter."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from app.adapters.store.base import StoreUnavailable
from app.adapters.store.in_memory import InMemoryCounterStore


@pytest.mark.asyncio
async def test_increment_starts_at_one_and_counts() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    assert await store.get("k") is None
    assert await store.increment("k") == 1
    assert await store.increment("k") == 2
    assert await store.get("k") == 2


@pytest.mark.asyncio
async def test_expiry_removes_key_after_ttl() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.increment("k")
    assert await store.set_expiry("k", 60) is True
    assert store.ttl("k") == 60

    clock.return_value = 1059.0
    assert await store.get("k") == 1

    clock.return_value = 1060.0
    assert await store.get("k") is None
    assert await store.increment("k") == 1


@pytest.mark.asyncio
async def test_set_expiry_on_missing_key_returns_false() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    assert await store.set_expiry("missing", 10) is False


@pytest.mark.asyncio
async def test_delete_and_delete_by_prefix() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))
    for key in ("ratelimit:a:text:1", "ratelimit:a:global:1", "ratelimit:b:text:1"):
        await store.increment(key)

    assert await store.delete("ratelimit:a:text:1") == 1
    assert await store.delete("ratelimit:a:text:1") == 0

    assert await store.delete_by_prefix("ratelimit:a:") == 1
    assert await store.keys_with_prefix("ratelimit:") == ["ratelimit:b:text:1"]


@pytest.mark.asyncio
async def test_keys_with_prefix_skips_expired() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)
    await store.increment("ratelimit:a:text:1")
    await store.set_expiry("ratelimit:a:text:1", 5)
    await store.increment("ratelimit:b:text:1")

    clock.return_value = 1010.0
    assert await store.keys_with_prefix("ratelimit:") == ["ratelimit:b:text:1"]


@pytest.mark.asyncio
async def test_offline_store_returns_unavailable_variant() -> None:
    store = InMemoryCounterStore()
    store.set_available(False)

    assert await store.is_available() is False
    result = await store.increment("k")
    assert isinstance(result, StoreUnavailable)
    assert result.operation == "increment"
    assert isinstance(await store.get("k"), StoreUnavailable)
    assert isinstance(await store.delete_by_prefix("k"), StoreUnavailable)
    assert isinstance(await store.keys_with_prefix("k"), StoreUnavailable)


@pytest.mark.asyncio
async def test_invalid_ttl_rejected() -> None:
    store = InMemoryCounterStore()
    await store.increment("k")

    with pytest.raises(ValueError):
        await store.set_expiry("k", 0)


def test_concurrent_increments_are_not_lost() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))
    workers = 8
    per_worker = 250

    async def _spend() -> None:
        for _ in range(per_worker):
            await store.increment("k")

    def _worker() -> None:
        asyncio.run(_spend())

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert asyncio.run(store.get("k")) == workers * per_worker
