"""
Unit tests for the Redis store client.

The redis-py client is mocked; these tests pin key prefixing, pipeline reply
handling and the translation of redis-py errors into store exceptions.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from task_cache.infrastructure.redis.exceptions import (
    StoreProtocolException,
    StoreUnavailableException,
)
from task_cache.infrastructure.redis.redis_store_client import RedisStoreClient


async def _scan(keys):
    for key in keys:
        yield key


@pytest.fixture
def redis_mock():
    redis = MagicMock()
    for command in ("get", "set", "delete", "exists", "incr", "decr", "expire", "ttl"):
        setattr(redis, command, AsyncMock())
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis


@pytest.fixture
def client(redis_mock):
    return RedisStoreClient(redis_mock, prefix="task:")


class TestRedisStoreClient:
    @pytest.mark.asyncio
    async def test_commands_use_prefixed_keys(self, client, redis_mock):
        redis_mock.get.return_value = "[]"

        assert await client.get("user:42:tasks") == "[]"
        redis_mock.get.assert_awaited_once_with("task:user:42:tasks")

    @pytest.mark.asyncio
    async def test_set_passes_ttl_and_nx(self, client, redis_mock):
        redis_mock.set.return_value = None

        assert await client.set("k", "v", ttl_seconds=60, nx=True) is False
        redis_mock.set.assert_awaited_once_with("task:k", "v", ex=60, nx=True)

    @pytest.mark.asyncio
    async def test_keys_strip_prefix(self, client, redis_mock):
        redis_mock.scan_iter = MagicMock(
            return_value=_scan(["task:user:42:tasks", "task:user:42:stats"])
        )

        keys = await client.keys("user:42:*")

        assert keys == ["user:42:tasks", "user:42:stats"]
        redis_mock.scan_iter.assert_called_once_with(
            match="task:user:42:*", count=500
        )

    @pytest.mark.asyncio
    async def test_connection_error_becomes_unavailable(self, client, redis_mock):
        redis_mock.get.side_effect = RedisConnectionError("refused")

        with pytest.raises(StoreUnavailableException) as exc_info:
            await client.get("k")

        assert exc_info.value.error_code == "STORE_UNAVAILABLE"
        assert exc_info.value.details["key"] == "k"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_unavailable(self, client, redis_mock):
        redis_mock.incr.side_effect = RedisTimeoutError("timed out")

        with pytest.raises(StoreUnavailableException):
            await client.incr("k")

    @pytest.mark.asyncio
    async def test_error_reply_becomes_protocol_error(self, client, redis_mock):
        redis_mock.incr.side_effect = ResponseError("value is not an integer")

        with pytest.raises(StoreProtocolException) as exc_info:
            await client.incr("k")

        assert exc_info.value.error_code == "STORE_PROTOCOL_ERROR"

    @pytest.mark.asyncio
    async def test_flush_prefix_deletes_only_prefixed_keys(self, client, redis_mock):
        redis_mock.scan_iter = MagicMock(return_value=_scan(["task:a", "task:b"]))
        redis_mock.delete.return_value = 2

        assert await client.flush_prefix() == 2
        redis_mock.delete.assert_awaited_once_with("task:a", "task:b")

    @pytest.mark.asyncio
    async def test_close(self, client, redis_mock):
        await client.close()
        redis_mock.aclose.assert_awaited_once()


class TestRedisStorePipeline:
    @pytest.fixture
    def pipe(self, redis_mock):
        pipe = MagicMock()
        pipe.execute = AsyncMock()
        redis_mock.pipeline.return_value = pipe
        return pipe

    @pytest.mark.asyncio
    async def test_pipeline_queues_prefixed_commands(self, client, redis_mock, pipe):
        pipe.execute.return_value = [True, 1, 60]

        replies = await (
            client.pipeline()
            .set("rl", "0", ttl_seconds=60, nx=True)
            .incr("rl")
            .ttl("rl")
            .execute()
        )

        assert replies == [True, 1, 60]
        redis_mock.pipeline.assert_called_once_with(transaction=False)
        pipe.set.assert_called_once_with("task:rl", "0", ex=60, nx=True)
        pipe.incr.assert_called_once_with("task:rl")
        pipe.ttl.assert_called_once_with("task:rl")

    @pytest.mark.asyncio
    async def test_error_reply_returned_in_place(self, client, pipe):
        pipe.execute.return_value = ["a", ResponseError("WRONGTYPE")]

        replies = await client.pipeline().get("x").incr("y").execute(
            raise_on_error=False
        )

        assert replies[0] == "a"
        assert isinstance(replies[1], StoreProtocolException)

    @pytest.mark.asyncio
    async def test_error_reply_raises_by_default(self, client, pipe):
        pipe.execute.return_value = ["a", ResponseError("WRONGTYPE")]

        with pytest.raises(StoreProtocolException):
            await client.pipeline().get("x").incr("y").execute()

    @pytest.mark.asyncio
    async def test_reply_count_mismatch(self, client, pipe):
        pipe.execute.return_value = [1]

        with pytest.raises(StoreProtocolException):
            await client.pipeline().incr("x").ttl("x").execute()

    @pytest.mark.asyncio
    async def test_connection_error_on_execute(self, client, pipe):
        pipe.execute.side_effect = RedisConnectionError("refused")

        with pytest.raises(StoreUnavailableException):
            await client.pipeline().get("x").execute()
