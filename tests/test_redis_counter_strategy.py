"""Unit tests for the Redis-backed shared counter strategy."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from quota_gate.adapters.counters.base import Decision, counter_key
from quota_gate.adapters.counters.redis_store import (
    INCREMENT_THEN_COMPARE,
    RedisCounterStrategy,
)
from quota_gate.core.errors import StoreTransportAppError


def test_counter_key_is_namespaced() -> None:
    assert counter_key("/poi/stats/daily") == "routeCounts:/poi/stats/daily"
    assert counter_key("/", "custom") == "custom:/"


def test_rejects_unknown_sequence(async_store) -> None:
    with pytest.raises(ValueError):
        RedisCounterStrategy(async_store, {"/a": 1}, sequence="compare_and_swap")


@pytest.mark.asyncio
async def test_seed_creates_zero_counters(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/": 10, "/poi": 1000})

    created = await strategy.seed()

    assert created == 2
    assert sync_store.get("routeCounts:/") == "0"
    assert sync_store.get("routeCounts:/poi") == "0"


@pytest.mark.asyncio
async def test_seed_preserves_existing_counts(async_store, sync_store) -> None:
    sync_store.set("routeCounts:/a", 7)
    strategy = RedisCounterStrategy(async_store, {"/a": 10, "/b": 10})

    created = await strategy.seed()
    created_again = await strategy.seed()

    assert created == 1
    assert created_again == 0
    assert sync_store.get("routeCounts:/a") == "7"
    assert sync_store.get("routeCounts:/b") == "0"


@pytest.mark.asyncio
async def test_admits_exactly_quota_then_rejects(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 2})
    await strategy.seed()

    assert await strategy.admit("/a") is Decision.ALLOW
    assert await strategy.admit("/a") is Decision.ALLOW
    assert await strategy.admit("/a") is Decision.REJECT_QUOTA_EXCEEDED
    assert sync_store.get("routeCounts:/a") == "2"


@pytest.mark.asyncio
async def test_unknown_route_is_rejected_without_creating_a_key(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 2})
    await strategy.seed()

    for _ in range(3):
        assert await strategy.admit("/b") is Decision.REJECT_UNKNOWN_ROUTE

    assert sync_store.exists("routeCounts:/b") == 0


@pytest.mark.asyncio
async def test_configured_route_missing_from_store_is_unknown(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 2})
    await strategy.seed()
    sync_store.delete("routeCounts:/a")

    assert await strategy.admit("/a") is Decision.REJECT_UNKNOWN_ROUTE
    assert sync_store.exists("routeCounts:/a") == 0


@pytest.mark.asyncio
async def test_route_in_store_but_not_in_quotas_is_unknown(async_store, sync_store) -> None:
    sync_store.set("routeCounts:/other", 0)
    strategy = RedisCounterStrategy(async_store, {"/a": 2})
    await strategy.seed()

    assert await strategy.admit("/other") is Decision.REJECT_UNKNOWN_ROUTE
    assert sync_store.get("routeCounts:/other") == "0"


@pytest.mark.asyncio
async def test_count_is_monotonic(async_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 3})
    await strategy.seed()
    seen = []

    for _ in range(5):
        await strategy.admit("/a")
        seen.append(await strategy.count("/a"))

    assert seen == [1, 2, 3, 3, 3]


@pytest.mark.asyncio
async def test_instances_share_counts(fake_server, async_store) -> None:
    import fakeredis

    other_client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    first = RedisCounterStrategy(async_store, {"/a": 2})
    second = RedisCounterStrategy(other_client, {"/a": 2})
    await first.seed()
    await second.seed()

    assert await first.admit("/a") is Decision.ALLOW
    assert await second.admit("/a") is Decision.ALLOW
    assert await first.admit("/a") is Decision.REJECT_QUOTA_EXCEEDED
    assert await second.count("/a") == 2


@pytest.mark.asyncio
async def test_concurrent_check_then_increment_counts_every_admission(async_store) -> None:
    quota = 5
    strategy = RedisCounterStrategy(async_store, {"/a": quota})
    await strategy.seed()

    decisions = await asyncio.gather(*(strategy.admit("/a") for _ in range(20)))
    admitted = decisions.count(Decision.ALLOW)

    # Overshoot is possible when reads race, but no increment is ever lost.
    assert admitted >= quota
    assert await strategy.count("/a") == admitted


@pytest.mark.asyncio
async def test_increment_then_compare_never_over_admits(async_store) -> None:
    quota = 5
    strategy = RedisCounterStrategy(async_store, {"/a": quota}, sequence=INCREMENT_THEN_COMPARE)
    await strategy.seed()

    decisions = await asyncio.gather(*(strategy.admit("/a") for _ in range(20)))

    assert decisions.count(Decision.ALLOW) == quota
    assert decisions.count(Decision.REJECT_QUOTA_EXCEEDED) == 15
    assert await strategy.count("/a") == quota


@pytest.mark.asyncio
async def test_increment_then_compare_rejects_unknown_route(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 1}, sequence=INCREMENT_THEN_COMPARE)
    await strategy.seed()
    sync_store.delete("routeCounts:/a")

    assert await strategy.admit("/a") is Decision.REJECT_UNKNOWN_ROUTE
    assert sync_store.exists("routeCounts:/a") == 0


@pytest.mark.asyncio
async def test_store_failure_raises_transport_error(fake_server, async_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 10})
    await strategy.seed()
    assert await strategy.admit("/a") is Decision.ALLOW

    fake_server.connected = False

    with pytest.raises(StoreTransportAppError) as exc_info:
        await strategy.admit("/a")

    assert exc_info.value.code == "store_unavailable"
    assert exc_info.value.details["route"] == "/a"
    assert exc_info.value.details["operation"] == "exists"


@pytest.mark.asyncio
async def test_store_recovers_after_outage(fake_server, async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 10})
    await strategy.seed()
    await strategy.admit("/a")

    fake_server.connected = False
    with pytest.raises(StoreTransportAppError):
        await strategy.admit("/a")
    fake_server.connected = True

    assert await strategy.admit("/a") is Decision.ALLOW
    assert sync_store.get("routeCounts:/a") == "2"


@pytest.mark.asyncio
async def test_seed_failure_raises_transport_error(fake_server, async_store) -> None:
    fake_server.connected = False
    strategy = RedisCounterStrategy(async_store, {"/a": 1})

    with pytest.raises(StoreTransportAppError) as exc_info:
        await strategy.seed()

    assert exc_info.value.details["operation"] == "seed"


@pytest.mark.asyncio
async def test_custom_key_prefix(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 1}, key_prefix="eq")
    await strategy.seed()

    assert await strategy.admit("/a") is Decision.ALLOW
    assert sync_store.get("eq:/a") == "1"
    assert sync_store.exists("routeCounts:/a") == 0


@pytest.mark.asyncio
async def test_non_integer_counter_is_a_store_fault(async_store, sync_store) -> None:
    strategy = RedisCounterStrategy(async_store, {"/a": 10})
    await strategy.seed()
    sync_store.set("routeCounts:/a", "abc")

    with pytest.raises(StoreTransportAppError) as exc_info:
        await strategy.admit("/a")

    assert exc_info.value.code == "store_corrupt"
    assert exc_info.value.details["route"] == "/a"
    assert exc_info.value.details["operation"] == "parse"
    assert sync_store.get("routeCounts:/a") == "abc"

    with pytest.raises(StoreTransportAppError) as exc_info:
        await strategy.count("/a")

    assert exc_info.value.code == "store_corrupt"


class _PartlyFailingClient:
    """Fails the write for one key at once while the others are still in flight."""

    def __init__(self, failing_key: str) -> None:
        self.failing_key = failing_key
        self.completed: list[str] = []

    async def set(self, key: str, value: int, nx: bool = False) -> bool:
        if key == self.failing_key:
            raise RedisConnectionError("connection reset")
        await asyncio.sleep(0.01)
        self.completed.append(key)
        return True


@pytest.mark.asyncio
async def test_seed_failure_waits_for_pending_writes() -> None:
    client = _PartlyFailingClient("routeCounts:/a")
    strategy = RedisCounterStrategy(client, {"/a": 1, "/b": 1, "/c": 1})

    with pytest.raises(StoreTransportAppError) as exc_info:
        await strategy.seed()

    assert exc_info.value.details["route"] == "/a"
    assert sorted(client.completed) == ["routeCounts:/b", "routeCounts:/c"]
