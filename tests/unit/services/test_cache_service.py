"""
Unit tests for the Cache Service.

Runs against the in-memory store with a simulated clock; outage scenarios
use a store that fails every call.
"""

import logging

import pytest

from task_cache.domain.cache.outcomes import OutcomeStatus
from task_cache.infrastructure.redis.memory_store import InMemoryStoreClient
from task_cache.services.cache.cache_service import CacheService


class TestCacheServiceOperations:
    """Healthy store behaviour."""

    @pytest.mark.asyncio
    async def test_set_then_get_round_trip(self, cache_service):
        value = {"id": "t1", "title": "Buy milk", "tags": ["home"]}

        await cache_service.set("task:t1", value, ttl_seconds=60)

        assert await cache_service.get("task:t1") == value

    @pytest.mark.asyncio
    async def test_delete_then_get_is_miss(self, cache_service):
        await cache_service.set("task:t1", {"id": "t1"}, ttl_seconds=60)

        outcome = await cache_service.delete("task:t1")

        assert outcome.value == 1
        assert await cache_service.get("task:t1") is None

    @pytest.mark.asyncio
    async def test_fetch_reports_hit_and_miss(self, cache_service):
        await cache_service.set("k", [1, 2])

        assert (await cache_service.fetch("k")).status == OutcomeStatus.HIT
        assert (await cache_service.fetch("other")).status == OutcomeStatus.MISS

    @pytest.mark.asyncio
    async def test_value_expires_with_clock(self, cache_service, clock):
        await cache_service.set("k", "v", ttl_seconds=10)

        clock.advance(9)
        assert await cache_service.get("k") == "v"

        clock.advance(1)
        assert await cache_service.get("k") is None

    @pytest.mark.asyncio
    async def test_non_positive_ttl_means_no_expiry(self, cache_service):
        await cache_service.set("k", "v", ttl_seconds=0)

        assert await cache_service.ttl("k") == -1

    @pytest.mark.asyncio
    async def test_exists_expire_ttl(self, cache_service, clock):
        await cache_service.set("k", "v")

        assert await cache_service.exists("k") is True
        assert await cache_service.expire("k", 30) is True
        assert await cache_service.ttl("k") == 30
        assert await cache_service.ttl("missing") == -2

    @pytest.mark.asyncio
    async def test_undecodable_value_is_miss(self, cache_service, store, caplog):
        await store.set("k", "{broken")

        with caplog.at_level(logging.ERROR):
            outcome = await cache_service.fetch("k")

        assert outcome.is_fallback
        assert outcome.value is None
        assert any(record.operation == "decode" for record in caplog.records)

    @pytest.mark.asyncio
    async def test_unencodable_value_is_not_written(self, cache_service):
        circular: list = []
        circular.append(circular)

        outcome = await cache_service.set("k", circular)

        assert outcome.is_fallback
        assert await cache_service.exists("k") is False


class TestCacheServiceBatch:
    @pytest.mark.asyncio
    async def test_mset_and_mget_single_round_trip(self, cache_service, store):
        before = store.round_trips
        written = await cache_service.mset({"a": 1, "b": {"x": 2}}, ttl_seconds=60)
        values = await cache_service.mget(["a", "b", "c"])

        assert written.value == 2
        assert values == [1, {"x": 2}, None]
        assert store.round_trips == before + 2

    @pytest.mark.asyncio
    async def test_mget_degrades_per_key(self, cache_service, store):
        await cache_service.set("good", "v")
        await store.set("bad", "{broken")

        assert await cache_service.mget(["good", "bad"]) == ["v", None]

    @pytest.mark.asyncio
    async def test_mdel(self, cache_service):
        await cache_service.mset({"a": 1, "b": 2})

        assert (await cache_service.mdel(["a", "b", "c"])).value == 2
        assert (await cache_service.mdel([])).value == 0


class TestCacheServicePatterns:
    @pytest.mark.asyncio
    async def test_pattern_delete_is_isolated(self, cache_service):
        await cache_service.set("user:42:tasks", [])
        await cache_service.set("user:42:stats", {})
        await cache_service.set("user:43:tasks", [])

        deleted = await cache_service.delete_by_pattern("user:42:*")

        assert deleted == 2
        assert await cache_service.exists("user:42:tasks") is False
        assert await cache_service.exists("user:43:tasks") is True

    @pytest.mark.asyncio
    async def test_keys(self, cache_service):
        await cache_service.set("task:1", {})
        await cache_service.set("task:2", {})
        await cache_service.set("category:1", {})

        assert sorted(await cache_service.keys("task:*")) == ["task:1", "task:2"]

    @pytest.mark.asyncio
    async def test_flush_all_only_clears_own_prefix(self, store, clock):
        other = InMemoryStoreClient(prefix="auth:", clock=clock)
        other._data = store._data
        await other.set("session:1", "{}")

        cache = CacheService(store)
        await cache.set("task:1", {})

        assert await cache.flush_all() == 1
        assert await other.get("session:1") == "{}"


class TestCacheServiceStats:
    @pytest.mark.asyncio
    async def test_stats_count_hits_and_misses(self, cache_service):
        await cache_service.set("k", "v")
        await cache_service.get("k")
        await cache_service.get("k")
        await cache_service.get("missing")

        stats = await cache_service.get_stats()

        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(0.6667, abs=1e-4)
        assert stats.total_keys == 1
        assert stats.memory_usage > 0

    @pytest.mark.asyncio
    async def test_reset_stats(self, cache_service):
        await cache_service.get("missing")
        cache_service.reset_stats()

        stats = await cache_service.get_stats()
        assert stats.misses == 0
        assert stats.hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_is_healthy(self, cache_service):
        assert await cache_service.is_healthy() is True


class TestCacheServiceFailSoft:
    """Every operation degrades instead of raising when the store is down."""

    @pytest.fixture
    def broken_cache(self, failing_store):
        return CacheService(failing_store)

    @pytest.mark.asyncio
    async def test_every_operation_degrades(self, broken_cache, caplog):
        with caplog.at_level(logging.ERROR):
            assert await broken_cache.get("k") is None
            assert (await broken_cache.set("k", "v", 60)).is_fallback
            assert (await broken_cache.delete("k")).is_fallback
            assert await broken_cache.exists("k") is False
            assert await broken_cache.expire("k", 10) is False
            assert await broken_cache.ttl("k") == -2
            assert await broken_cache.mget(["a", "b"]) == [None, None]
            assert (await broken_cache.mset({"a": 1})).is_fallback
            assert (await broken_cache.mdel(["a"])).is_fallback
            assert await broken_cache.keys("*") == []
            assert await broken_cache.delete_by_pattern("user:*") == 0
            assert await broken_cache.is_healthy() is False
            assert await broken_cache.flush_all() == 0

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 13
        assert all(hasattr(record, "operation") for record in errors)

    @pytest.mark.asyncio
    async def test_fetch_reports_fallback(self, broken_cache):
        outcome = await broken_cache.fetch("k")

        assert outcome.status == OutcomeStatus.FALLBACK
        assert outcome.error.error_code == "STORE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_stats_survive_outage(self, broken_cache):
        await broken_cache.get("k")

        stats = await broken_cache.get_stats()

        assert stats.misses == 1
        assert stats.errors >= 1
        assert stats.total_keys is None
