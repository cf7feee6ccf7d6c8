"""
Unit tests for the in-memory store client.

Covers the Redis reply conventions the cache service and rate limiter rely
on: TTL codes, NX writes, INCR on missing keys, pipelines and fault injection.
"""

import pytest

from task_cache.infrastructure.redis.exceptions import (
    StoreProtocolException,
    StoreUnavailableException,
)
from task_cache.infrastructure.redis.memory_store import InMemoryStoreClient


class TestInMemoryStoreCommands:
    """Single-command behaviour."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        assert await store.set("user:42:tasks", "[]") is True
        assert await store.get("user:42:tasks") == "[]"
        assert await store.get("user:43:tasks") is None

    @pytest.mark.asyncio
    async def test_keys_are_stored_under_prefix(self, store):
        await store.set("task:1", "{}")

        assert "task:task:1" in store._data
        assert await store.keys("task:*") == ["task:1"]

    @pytest.mark.asyncio
    async def test_ttl_codes(self, store, clock):
        await store.set("a", "1", ttl_seconds=30)
        await store.set("b", "1")

        assert await store.ttl("a") == 30
        assert await store.ttl("b") == -1
        assert await store.ttl("missing") == -2

        clock.advance(10.5)
        assert await store.ttl("a") == 20

    @pytest.mark.asyncio
    async def test_expired_keys_disappear(self, store, clock):
        await store.set("a", "1", ttl_seconds=5)
        clock.advance(5)

        assert await store.get("a") is None
        assert await store.exists("a") is False
        assert await store.keys("*") == []

    @pytest.mark.asyncio
    async def test_set_nx_does_not_overwrite(self, store):
        assert await store.set("k", "first", nx=True) is True
        assert await store.set("k", "second", nx=True) is False
        assert await store.get("k") == "first"

    @pytest.mark.asyncio
    async def test_incr_creates_missing_key_without_expiry(self, store):
        assert await store.incr("counter") == 1
        assert await store.incr("counter") == 2
        assert await store.ttl("counter") == -1

    @pytest.mark.asyncio
    async def test_incr_keeps_existing_expiry(self, store, clock):
        await store.set("counter", "0", ttl_seconds=60)
        clock.advance(20)
        await store.incr("counter")

        assert await store.ttl("counter") == 40

    @pytest.mark.asyncio
    async def test_incr_non_integer_raises_protocol_error(self, store):
        await store.set("k", "not-a-number")

        with pytest.raises(StoreProtocolException):
            await store.incr("k")

    @pytest.mark.asyncio
    async def test_delete_counts_only_existing_keys(self, store):
        await store.set("a", "1")
        await store.set("b", "1")

        assert await store.delete("a", "b", "c") == 2
        assert await store.delete() == 0

    @pytest.mark.asyncio
    async def test_expire_missing_key(self, store):
        assert await store.expire("missing", 10) is False

    @pytest.mark.asyncio
    async def test_flush_prefix_leaves_other_deployments(self, clock):
        ours = InMemoryStoreClient(prefix="task:", clock=clock)
        theirs = InMemoryStoreClient(prefix="auth:", clock=clock)
        # Same backing dictionary, like two services on one Redis
        theirs._data = ours._data

        await ours.set("user:1:tasks", "[]")
        await theirs.set("session:1", "{}")

        assert await ours.flush_prefix() == 1
        assert await theirs.get("session:1") == "{}"

    @pytest.mark.asyncio
    async def test_dbsize_and_info(self, store):
        await store.set("a", "1")
        await store.set("b", "22")

        assert await store.dbsize() == 2
        assert (await store.info())["used_memory"] > 0


class TestInMemoryPipeline:
    """Pipelines run in one round trip."""

    @pytest.mark.asyncio
    async def test_pipeline_is_one_round_trip(self, store):
        before = store.round_trips
        replies = await (
            store.pipeline()
            .set("k", "0", ttl_seconds=60, nx=True)
            .incr("k")
            .ttl("k")
            .execute()
        )

        assert replies == [True, 1, 60]
        assert store.round_trips == before + 1

    @pytest.mark.asyncio
    async def test_failed_command_returned_in_place(self, store):
        await store.set("text", "abc")
        pipeline = store.pipeline().get("text").incr("text").get("text")

        replies = await pipeline.execute(raise_on_error=False)

        assert replies[0] == "abc"
        assert isinstance(replies[1], StoreProtocolException)
        assert replies[2] == "abc"

    @pytest.mark.asyncio
    async def test_failed_command_raises_by_default(self, store):
        store.fail_command("ttl")

        with pytest.raises(StoreProtocolException):
            await store.pipeline().incr("k").ttl("k").execute()


class TestFaultInjection:
    @pytest.mark.asyncio
    async def test_fail_all_raises_unavailable(self, failing_store):
        with pytest.raises(StoreUnavailableException):
            await failing_store.get("k")
        with pytest.raises(StoreUnavailableException):
            await failing_store.ping()
        with pytest.raises(StoreUnavailableException):
            await failing_store.pipeline().get("k").execute()

    @pytest.mark.asyncio
    async def test_recover(self, failing_store):
        failing_store.recover()

        assert await failing_store.ping() is True
