"""
Cache Service

Generic, TTL-aware cache over the shared store. Every operation is fail-soft:
store and serialization failures are logged and converted into a miss, a
no-op or ``False``, so callers never need error handling around the cache.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, Field

from ...domain.cache.codec import Codec, JsonCodec
from ...domain.cache.outcomes import CacheOutcome
from ...domain.cache.value_objects import CacheEntry
from ...infrastructure.redis.exceptions import (
    CacheStoreException,
    SerializationException,
)
from ...infrastructure.redis.store_client import StoreClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

# Upper bound of keys sent in a single DEL
DELETE_CHUNK_SIZE = 500


class CacheStats(BaseModel):
    """In-process counters merged with store-reported figures."""

    hits: int = Field(..., description="Cache hits since process start")
    misses: int = Field(..., description="Cache misses since process start")
    errors: int = Field(..., description="Store or codec failures since process start")
    hit_rate: float = Field(..., description="hits / (hits + misses), 0 when idle")
    total_keys: Optional[int] = Field(None, description="Store-reported key count")
    memory_usage: Optional[int] = Field(None, description="Store memory in bytes")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CacheService:
    """
    Namespaced, TTL-aware cache on top of a StoreClient.

    Args:
        store: Injected store client (Redis or in-memory)
        codec: Default value codec; individual calls may override it
    """

    def __init__(self, store: StoreClient, codec: Optional[Codec] = None):
        self.store = store
        self.codec = codec or JsonCodec()
        self._hits = 0
        self._misses = 0
        self._errors = 0

    async def _guard(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[Any]],
        default: Any = None,
    ) -> CacheOutcome:
        """Run a store call, converting store failures into a logged fallback."""
        try:
            return CacheOutcome.ok(await call())
        except CacheStoreException as e:
            self._record_failure(operation, key, e)
            return CacheOutcome.fallback(default, e)

    def _record_failure(
        self, operation: str, key: str, error: CacheStoreException
    ) -> None:
        self._errors += 1
        logger.error(
            f"Cache {operation} failed for {key}: {error.message}",
            extra={
                "operation": operation,
                "key": key,
                "error_code": error.error_code,
                "details": error.details,
            },
        )

    @staticmethod
    def _ttl(ttl_seconds: Optional[int]) -> Optional[int]:
        return ttl_seconds if ttl_seconds and ttl_seconds > 0 else None

    # Single-key operations

    async def fetch(self, key: str, codec: Optional[Codec] = None) -> CacheOutcome:
        """
        Read a key and report how the value was obtained.

        Returns:
            HIT with the decoded value, MISS when the key is absent, or
            FALLBACK with ``None`` when the store or the codec failed
        """
        codec = codec or self.codec

        with tracer.start_as_current_span("cache.get") as span:
            span.set_attribute("cache.key", key)

            outcome = await self._guard("get", key, lambda: self.store.get(key))
            if outcome.is_fallback:
                self._misses += 1
                span.set_status(Status(StatusCode.ERROR, outcome.error.message))
                return outcome

            raw = outcome.value
            if raw is None:
                self._misses += 1
                span.set_attribute("cache.hit", False)
                logger.debug("Cache miss", extra={"key": key})
                return CacheOutcome.miss()

            try:
                value = codec.decode(raw)
            except SerializationException as e:
                self._misses += 1
                self._record_failure("decode", key, e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                return CacheOutcome.fallback(None, e)

            self._hits += 1
            span.set_attribute("cache.hit", True)
            logger.debug("Cache hit", extra={"key": key})
            return CacheOutcome.hit(value)

    async def get(self, key: str, codec: Optional[Codec] = None) -> Optional[Any]:
        """Cached value, or ``None`` on a miss or any failure."""
        return (await self.fetch(key, codec)).value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> CacheOutcome:
        """
        Write a value; with an expiry when ``ttl_seconds`` is positive.

        Fire-and-forget: the returned outcome may be ignored.
        """
        codec = codec or self.codec

        with tracer.start_as_current_span("cache.set") as span:
            span.set_attribute("cache.key", key)

            entry = CacheEntry(key=key, value=value, ttl_seconds=self._ttl(ttl_seconds))
            try:
                raw = codec.encode(entry.value)
            except SerializationException as e:
                self._record_failure("encode", key, e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                return CacheOutcome.fallback(None, e)

            outcome = await self._guard(
                "set",
                key,
                lambda: self.store.set(key, raw, ttl_seconds=entry.ttl_seconds),
            )
            if outcome.is_fallback:
                span.set_status(Status(StatusCode.ERROR, outcome.error.message))
            else:
                logger.debug(
                    "Cache set successful",
                    extra={"key": key, "ttl": entry.ttl_seconds},
                )
            return outcome

    async def delete(self, key: str) -> CacheOutcome:
        """Delete a key; the outcome value is the number of keys removed."""
        outcome = await self._guard("delete", key, lambda: self.store.delete(key), 0)
        if not outcome.is_fallback:
            logger.debug("Cache delete successful", extra={"key": key})
        return outcome

    async def exists(self, key: str) -> bool:
        outcome = await self._guard("exists", key, lambda: self.store.exists(key), False)
        return bool(outcome.value)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        outcome = await self._guard(
            "expire", key, lambda: self.store.expire(key, ttl_seconds), False
        )
        return bool(outcome.value)

    async def ttl(self, key: str) -> int:
        """Remaining seconds; -1 without expiry, -2 when absent or on failure."""
        outcome = await self._guard("ttl", key, lambda: self.store.ttl(key), -2)
        return outcome.value

    # Batch operations

    async def mget(
        self, keys: List[str], codec: Optional[Codec] = None
    ) -> List[Optional[Any]]:
        """
        Read several keys in one round trip.

        A key that fails to decode or that the store rejected is returned as
        ``None`` without affecting the others.
        """
        if not keys:
            return []
        codec = codec or self.codec

        with tracer.start_as_current_span("cache.mget") as span:
            span.set_attribute("cache.key_count", len(keys))

            pipeline = self.store.pipeline()
            for key in keys:
                pipeline.get(key)

            outcome = await self._guard(
                "mget",
                keys[0],
                lambda: pipeline.execute(raise_on_error=False),
            )
            if outcome.is_fallback:
                self._misses += len(keys)
                span.set_status(Status(StatusCode.ERROR, outcome.error.message))
                return [None] * len(keys)

            values: List[Optional[Any]] = []
            for key, raw in zip(keys, outcome.value):
                if isinstance(raw, CacheStoreException):
                    self._misses += 1
                    self._record_failure("mget", key, raw)
                    values.append(None)
                elif raw is None:
                    self._misses += 1
                    values.append(None)
                else:
                    try:
                        values.append(codec.decode(raw))
                        self._hits += 1
                    except SerializationException as e:
                        self._misses += 1
                        self._record_failure("decode", key, e)
                        values.append(None)
            return values

    async def mset(
        self,
        items: Mapping[str, Any],
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> CacheOutcome:
        """
        Write several keys in one round trip.

        Values that cannot be encoded are skipped; the outcome value is the
        number of keys written.
        """
        if not items:
            return CacheOutcome.ok(0)
        codec = codec or self.codec
        ttl = self._ttl(ttl_seconds)

        with tracer.start_as_current_span("cache.mset") as span:
            span.set_attribute("cache.key_count", len(items))

            pipeline = self.store.pipeline()
            queued: List[str] = []
            for key, value in items.items():
                entry = CacheEntry(key=key, value=value, ttl_seconds=ttl)
                try:
                    raw = codec.encode(entry.value)
                except SerializationException as e:
                    self._record_failure("encode", key, e)
                    continue
                pipeline.set(key, raw, ttl_seconds=entry.ttl_seconds)
                queued.append(key)

            if not queued:
                return CacheOutcome.ok(0)

            outcome = await self._guard(
                "mset",
                queued[0],
                lambda: pipeline.execute(raise_on_error=False),
                0,
            )
            if outcome.is_fallback:
                span.set_status(Status(StatusCode.ERROR, outcome.error.message))
                return outcome

            written = 0
            for key, reply in zip(queued, outcome.value):
                if isinstance(reply, CacheStoreException):
                    self._record_failure("mset", key, reply)
                else:
                    written += 1
            return CacheOutcome.ok(written)

    async def mdel(self, keys: List[str]) -> CacheOutcome:
        """Delete several keys in one round trip; value is the number removed."""
        if not keys:
            return CacheOutcome.ok(0)

        pipeline = self.store.pipeline()
        for start in range(0, len(keys), DELETE_CHUNK_SIZE):
            pipeline.delete(*keys[start:start + DELETE_CHUNK_SIZE])

        outcome = await self._guard(
            "mdel", keys[0], lambda: pipeline.execute(raise_on_error=False), 0
        )
        if outcome.is_fallback:
            return outcome

        deleted = 0
        for reply in outcome.value:
            if isinstance(reply, CacheStoreException):
                self._record_failure("mdel", keys[0], reply)
            else:
                deleted += reply
        return CacheOutcome.ok(deleted)

    # Pattern operations

    async def keys(self, pattern: str) -> List[str]:
        """Logical keys matching a glob pattern; empty on failure."""
        outcome = await self._guard("keys", pattern, lambda: self.store.keys(pattern), [])
        return outcome.value

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Not atomic with concurrent writers: a key created between the scan
        and the delete survives until its TTL.

        Returns:
            Number of keys deleted (0 on failure)
        """
        with tracer.start_as_current_span("cache.delete_by_pattern") as span:
            span.set_attribute("cache.pattern", pattern)

            outcome = await self._guard(
                "delete_by_pattern", pattern, lambda: self.store.keys(pattern), []
            )
            if outcome.is_fallback:
                span.set_status(Status(StatusCode.ERROR, outcome.error.message))
                return 0

            matched = outcome.value
            if not matched:
                return 0

            deleted = (await self.mdel(matched)).value
            span.set_attribute("cache.deleted", deleted)
            logger.debug(
                "Cache pattern invalidation successful",
                extra={"pattern": pattern, "count": deleted},
            )
            return deleted

    # Observability and administration

    async def get_stats(self) -> CacheStats:
        """Hit/miss counters merged with the store's key count and memory."""
        lookups = self._hits + self._misses
        total_keys = (await self._guard("dbsize", "*", self.store.dbsize)).value
        info = (await self._guard("info", "*", self.store.info, {})).value or {}

        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            errors=self._errors,
            hit_rate=round(self._hits / lookups, 4) if lookups else 0.0,
            total_keys=total_keys,
            memory_usage=info.get("used_memory"),
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._errors = 0

    async def is_healthy(self) -> bool:
        """Lightweight liveness check."""
        outcome = await self._guard("ping", "*", self.store.ping, False)
        return bool(outcome.value)

    async def flush_all(self) -> int:
        """
        Delete every key of this deployment. Administrative and test use only.

        Returns:
            Number of keys deleted (0 on failure)
        """
        logger.warning("Flushing all cache keys for this deployment")
        outcome = await self._guard("flush_all", "*", self.store.flush_prefix, 0)
        if not outcome.is_fallback:
            logger.warning(
                f"Cache flushed, {outcome.value} keys deleted",
                extra={"count": outcome.value},
            )
        return outcome.value
