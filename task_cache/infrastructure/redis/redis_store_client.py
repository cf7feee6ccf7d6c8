"""
Redis Store Client

StoreClient implementation on top of redis-py's asyncio client. Applies the
deployment key prefix and translates redis-py errors into the store
exception taxonomy.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    RedisError,
)

from .exceptions import StoreProtocolException, StoreUnavailableException
from .store_client import StoreClient, StorePipeline

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    RedisConnectionError,
    RedisTimeoutError,
    asyncio.TimeoutError,
    ConnectionRefusedError,
    OSError,
)


@contextmanager
def translate_errors(operation: str, key: Optional[str] = None):
    """Re-raise redis-py errors as store exceptions."""
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableException(
            message=f"Redis unavailable during {operation}",
            operation=operation,
            key=key,
            original_error=e,
        )
    except RedisError as e:
        raise StoreProtocolException(
            message=f"Redis rejected {operation}: {e}",
            operation=operation,
            key=key,
            original_error=e,
        )


class RedisStorePipeline(StorePipeline):
    """Non-transactional redis-py pipeline with prefixed keys."""

    def __init__(self, client: "RedisStoreClient"):
        self._client = client
        self._pipe = client.redis.pipeline(transaction=False)
        self._operations: List[str] = []

    def get(self, key: str) -> "RedisStorePipeline":
        self._pipe.get(self._client.make_key(key))
        self._operations.append("get")
        return self

    def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> "RedisStorePipeline":
        self._pipe.set(self._client.make_key(key), value, ex=ttl_seconds, nx=nx)
        self._operations.append("set")
        return self

    def delete(self, *keys: str) -> "RedisStorePipeline":
        self._pipe.delete(*[self._client.make_key(key) for key in keys])
        self._operations.append("delete")
        return self

    def incr(self, key: str) -> "RedisStorePipeline":
        self._pipe.incr(self._client.make_key(key))
        self._operations.append("incr")
        return self

    def decr(self, key: str) -> "RedisStorePipeline":
        self._pipe.decr(self._client.make_key(key))
        self._operations.append("decr")
        return self

    def expire(self, key: str, seconds: int) -> "RedisStorePipeline":
        self._pipe.expire(self._client.make_key(key), seconds)
        self._operations.append("expire")
        return self

    def ttl(self, key: str) -> "RedisStorePipeline":
        self._pipe.ttl(self._client.make_key(key))
        self._operations.append("ttl")
        return self

    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        operation = "pipeline[" + ",".join(self._operations) + "]"
        with translate_errors(operation):
            raw = await self._pipe.execute(raise_on_error=False)

        if len(raw) != len(self._operations):
            raise StoreProtocolException(
                message="Pipeline returned a different number of replies",
                operation=operation,
                response=raw,
            )

        results = []
        for name, reply in zip(self._operations, raw):
            if isinstance(reply, Exception):
                error = StoreProtocolException(
                    message=f"Redis rejected {name} in pipeline: {reply}",
                    operation=name,
                    original_error=reply,
                )
                if raise_on_error:
                    raise error
                results.append(error)
            else:
                results.append(reply)
        return results

    def __len__(self) -> int:
        return len(self._operations)


class RedisStoreClient(StoreClient):
    """
    Redis-backed store client.

    The underlying client must be created with ``decode_responses=True``
    so that values and keys come back as ``str``.
    """

    def __init__(self, redis_client: Redis, prefix: str = ""):
        self.redis = redis_client
        self.prefix = prefix

    def make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _extract_original_key(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix):
            return key[len(self.prefix):]
        return key

    async def get(self, key: str) -> Optional[str]:
        with translate_errors("get", key):
            return await self.redis.get(self.make_key(key))

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        with translate_errors("set", key):
            result = await self.redis.set(
                self.make_key(key), value, ex=ttl_seconds, nx=nx
            )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with translate_errors("delete", keys[0]):
            return await self.redis.delete(*[self.make_key(key) for key in keys])

    async def exists(self, key: str) -> bool:
        with translate_errors("exists", key):
            return await self.redis.exists(self.make_key(key)) == 1

    async def incr(self, key: str) -> int:
        with translate_errors("incr", key):
            return await self.redis.incr(self.make_key(key))

    async def decr(self, key: str) -> int:
        with translate_errors("decr", key):
            return await self.redis.decr(self.make_key(key))

    async def expire(self, key: str, seconds: int) -> bool:
        with translate_errors("expire", key):
            return bool(await self.redis.expire(self.make_key(key), seconds))

    async def ttl(self, key: str) -> int:
        with translate_errors("ttl", key):
            return await self.redis.ttl(self.make_key(key))

    async def keys(self, pattern: str) -> List[str]:
        """List matching keys with SCAN so large keyspaces do not block Redis."""
        found = []
        with translate_errors("scan", pattern):
            async for key in self.redis.scan_iter(
                match=self.make_key(pattern), count=500
            ):
                found.append(self._extract_original_key(key))
        return found

    async def ping(self) -> bool:
        with translate_errors("ping"):
            return bool(await self.redis.ping())

    async def info(self) -> Dict[str, Any]:
        with translate_errors("info"):
            return await self.redis.info()

    async def dbsize(self) -> int:
        with translate_errors("dbsize"):
            return await self.redis.dbsize()

    async def flush_prefix(self) -> int:
        keys = await self.keys("*")
        if not keys:
            return 0
        deleted = 0
        # Chunked so a single DEL never carries an unbounded argument list
        for start in range(0, len(keys), 500):
            deleted += await self.delete(*keys[start:start + 500])
        return deleted

    def pipeline(self) -> RedisStorePipeline:
        return RedisStorePipeline(self)

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError as e:
            logger.warning(f"Failed to close Redis client cleanly: {e}")
