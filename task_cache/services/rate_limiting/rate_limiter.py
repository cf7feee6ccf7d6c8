"""
Rate Limiter Service

Distributed fixed-window rate limiter on the shared store. Counters live in
the store, so every service replica enforces the same quota per key. The
limiter fails open: when the store is unavailable or answers with something
unexpected, the request is allowed and the failure is logged at ERROR.
"""

import hashlib
import logging
import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, Field

from ...core.config import Settings
from ...domain.cache.value_objects import (
    MAX_KEY_LENGTH,
    NAMESPACES,
    CacheKey,
    CacheNamespace,
    RateLimitCounter,
    namespace_ttl,
)
from ...infrastructure.redis.exceptions import (
    CacheStoreException,
    StoreProtocolException,
)
from ...infrastructure.redis.store_client import StoreClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[\s*?\[\]]")
_DIGEST_PREFIX = "sha256:"
_HEALTH_CHECK_KEY = "ratelimit-health-check"
_DELETE_CHUNK_SIZE = 500


class RateLimitResult(BaseModel):
    """Result of a rate limit increment."""

    allowed: bool = Field(..., description="Whether request is allowed")
    count: int = Field(..., description="Requests counted in the current window")
    remaining: int = Field(..., description="Remaining requests")
    reset_time: datetime = Field(..., description="When the current window ends")
    limit: int = Field(..., description="Rate limit threshold")
    window_seconds: int = Field(..., description="Time window in seconds")
    key: str = Field(..., description="Counter key")
    retry_after: Optional[int] = Field(None, description="Retry-After header value")
    fallback: bool = Field(
        False, description="True when the store failed and the request was let through"
    )
    whitelisted: bool = Field(
        False, description="True when the identifier bypassed counting"
    )


class RateLimitStatus(BaseModel):
    """Counter state read without incrementing."""

    count: int = Field(..., ge=0)
    ttl: int = Field(..., description="Seconds until reset; -1 without expiry")


class RateLimitHealth(BaseModel):
    """Store round trip as seen by the limiter."""

    healthy: bool
    latency_ms: Optional[float] = Field(None, description="Write/read/delete round trip")
    fallback_active: bool = Field(
        False, description="True while requests are being let through unchecked"
    )
    last_error: Optional[str] = None


class RateLimitPolicy(BaseModel):
    """Named quota. Distinct policies never share counters."""

    name: str = Field(..., min_length=1)
    max_requests: int = Field(..., ge=1, description="Number of allowed requests")
    window_seconds: int = Field(..., ge=1, description="Time window in seconds")

    def __str__(self) -> str:
        return f"{self.name}: {self.max_requests} requests per {self.window_seconds}s"


DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    policy.name: policy
    for policy in (
        RateLimitPolicy(name="general", max_requests=100, window_seconds=900),
        RateLimitPolicy(name="auth", max_requests=20, window_seconds=900),
        RateLimitPolicy(name="create_task", max_requests=10, window_seconds=60),
        RateLimitPolicy(
            name="authenticated_user", max_requests=200, window_seconds=900
        ),
        RateLimitPolicy(name="search", max_requests=30, window_seconds=60),
        RateLimitPolicy(name="bulk", max_requests=5, window_seconds=300),
        RateLimitPolicy(name="admin", max_requests=50, window_seconds=60),
    )
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_identifier(identifier: Any, budget: int) -> str:
    """
    Key-safe form of a raw identifier that fits in ``budget`` characters.

    Identifiers that do not fit are replaced by their SHA-256 digest. Any
    identifier already shaped like a digest is hashed too, so a raw value can
    never share a counter with a hashed one.
    """
    raw = str(identifier or "")
    safe = _UNSAFE_IDENTIFIER_CHARS.sub("_", raw) or "unknown"
    if len(safe) > budget or safe.startswith(_DIGEST_PREFIX):
        safe = _DIGEST_PREFIX + hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return safe


def _identifier_key(namespace: CacheNamespace, identifier: Any, **parts: str) -> str:
    template = NAMESPACES[namespace].template
    budget = MAX_KEY_LENGTH - len(template.format(identifier="", **parts))
    return CacheKey.build(
        namespace, identifier=_safe_identifier(identifier, budget), **parts
    ).value


def _as_int(reply, operation: str, key: str) -> int:
    """Coerce a store reply to int, rejecting anything that is not a count."""
    if isinstance(reply, bool) or reply is None:
        raise StoreProtocolException(
            message=f"Unexpected {operation} reply",
            operation=operation,
            key=key,
            response=reply,
        )
    try:
        return int(reply)
    except (TypeError, ValueError) as e:
        raise StoreProtocolException(
            message=f"Unexpected {operation} reply",
            operation=operation,
            key=key,
            response=reply,
            original_error=e,
        )


class RateLimiter:
    """
    Counter-based fixed-window rate limiter.

    The window of a counter starts at its first increment and does not move
    until it expires; later increments never extend it.

    Args:
        store: Injected store client shared by all replicas
        settings: Optional settings for the default policy
        policies: Named policies; defaults to DEFAULT_POLICIES
        now: Clock used to compute reset times
    """

    def __init__(
        self,
        store: StoreClient,
        settings: Optional[Settings] = None,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.policies = dict(policies or DEFAULT_POLICIES)
        self._now = now
        self.whitelist_seconds = namespace_ttl(
            CacheNamespace.RATE_LIMIT_WHITELIST, settings
        )

        if settings is not None:
            self.policies["default"] = RateLimitPolicy(
                name="default",
                max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
                window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            )
        self.policies.setdefault("default", self.policies["general"])

    # Key construction

    @staticmethod
    def build_key(policy: Union[str, RateLimitPolicy], identifier: str) -> str:
        """Namespace a raw identifier under a policy."""
        name = policy.name if isinstance(policy, RateLimitPolicy) else policy
        return _identifier_key(CacheNamespace.RATE_LIMIT, identifier, policy=name)

    @staticmethod
    def whitelist_key(identifier: str) -> str:
        return _identifier_key(CacheNamespace.RATE_LIMIT_WHITELIST, identifier)

    def get_policy(self, policy: Union[str, RateLimitPolicy]) -> RateLimitPolicy:
        if isinstance(policy, RateLimitPolicy):
            return policy
        try:
            return self.policies[policy]
        except KeyError:
            raise ValueError(f"Unknown rate limit policy: {policy}")

    # Counter operations

    async def increment(
        self, key: str, window_seconds: int, max_requests: int
    ) -> RateLimitResult:
        """
        Count one request against a key and decide whether it is allowed.

        Sends SET NX EX, INCR and TTL as one pipeline: the expiry is armed
        only by the command that creates the counter, and the count and
        reset time come back in the same round trip.
        """
        with tracer.start_as_current_span("rate_limiter.increment") as span:
            span.set_attribute("rate_limit.key", key)
            span.set_attribute("rate_limit.limit", max_requests)
            span.set_attribute("rate_limit.window", window_seconds)

            try:
                pipeline = self.store.pipeline()
                pipeline.set(key, "0", ttl_seconds=window_seconds, nx=True)
                pipeline.incr(key)
                pipeline.ttl(key)
                replies = await pipeline.execute()

                if len(replies) != 3:
                    raise StoreProtocolException(
                        message="Rate limit pipeline returned unexpected replies",
                        operation="increment",
                        key=key,
                        response=replies,
                    )

                count = _as_int(replies[1], "incr", key)
                ttl = _as_int(replies[2], "ttl", key)

                if ttl < 0:
                    # Counter without expiry would never reset
                    logger.warning(
                        f"Rate limit counter {key} had no expiry, re-arming",
                        extra={"key": key, "ttl": ttl},
                    )
                    ttl = window_seconds
                    try:
                        await self.store.expire(key, window_seconds)
                    except CacheStoreException as e:
                        # The increment already counted; keep its result
                        logger.error(
                            f"Failed to re-arm expiry of rate limit counter {key}: {e.message}",
                            extra={
                                "operation": "expire",
                                "key": key,
                                "error_code": e.error_code,
                            },
                        )

            except CacheStoreException as e:
                logger.error(
                    f"Rate limit increment failed for {key}, allowing request: {e.message}",
                    extra={
                        "operation": "increment",
                        "key": key,
                        "error_code": e.error_code,
                        "details": e.details,
                    },
                )
                span.set_status(Status(StatusCode.ERROR, e.message))
                return self._fail_open(key, window_seconds, max_requests)

            allowed = count <= max_requests
            result = RateLimitResult(
                allowed=allowed,
                count=count,
                remaining=max(0, max_requests - count),
                reset_time=self._now() + timedelta(seconds=ttl),
                limit=max_requests,
                window_seconds=window_seconds,
                key=key,
                retry_after=None if allowed else max(1, ttl),
            )

            span.set_attribute("rate_limit.allowed", allowed)
            span.set_attribute("rate_limit.count", count)

            if not allowed:
                logger.warning(
                    f"Rate limit exceeded for {key}",
                    extra={
                        "key": key,
                        "current": count,
                        "limit": max_requests,
                        "window": window_seconds,
                        "reset_seconds": ttl,
                    },
                )

            return result

    def _fail_open(
        self, key: str, window_seconds: int, max_requests: int
    ) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            count=1,
            # Callers pass max_requests >= 1; the clamp only guards raw increments
            remaining=max(0, max_requests - 1),
            reset_time=self._now() + timedelta(seconds=window_seconds),
            limit=max_requests,
            window_seconds=window_seconds,
            key=key,
            retry_after=None,
            fallback=True,
        )

    async def decrement(self, key: str) -> None:
        """
        Give back one request of quota.

        No-op when the counter is absent or already at zero. A decrement that
        races below zero is corrected back to zero.
        """
        try:
            raw = await self.store.get(key)
            if raw is None or _as_int(raw, "get", key) <= 0:
                return

            value = await self.store.decr(key)
            if value < 0:
                value = await self.store.incr(key)

            logger.debug(
                "Rate limit decremented", extra={"key": key, "count": max(0, value)}
            )

        except CacheStoreException as e:
            logger.error(
                f"Failed to decrement rate limit counter {key}: {e.message}",
                extra={"operation": "decrement", "key": key, "error_code": e.error_code},
            )

    async def reset_key(self, key: str) -> bool:
        """Delete a counter. Administrative and test use."""
        try:
            await self.store.delete(key)
        except CacheStoreException as e:
            logger.error(
                f"Failed to reset rate limit key {key}: {e.message}",
                extra={"operation": "reset_key", "key": key, "error_code": e.error_code},
            )
            return False

        logger.info("Rate limit key reset", extra={"key": key})
        return True

    async def get_status(self, key: str) -> Optional[RateLimitStatus]:
        """Current count and TTL without incrementing; None when absent or on error."""
        try:
            pipeline = self.store.pipeline()
            pipeline.get(key)
            pipeline.ttl(key)
            raw, ttl = await pipeline.execute()

            if raw is None:
                return None

            return RateLimitStatus(
                count=max(0, _as_int(raw, "get", key)),
                ttl=_as_int(ttl, "ttl", key),
            )

        except (CacheStoreException, ValueError) as e:
            logger.error(
                f"Failed to get rate limit status for {key}: {e}",
                extra={"operation": "get_status", "key": key},
            )
            return None

    async def get_counter(
        self, key: str, window_seconds: int
    ) -> Optional[RateLimitCounter]:
        status = await self.get_status(key)
        if status is None:
            return None
        reset_at = (
            self._now() + timedelta(seconds=status.ttl) if status.ttl >= 0 else None
        )
        return RateLimitCounter(
            key=key,
            count=status.count,
            window_seconds=window_seconds,
            reset_at=reset_at,
        )

    # Policy helpers

    async def check(
        self, policy: Union[str, RateLimitPolicy], identifier: str
    ) -> RateLimitResult:
        """
        Increment the counter of ``identifier`` under a named policy.

        A temporarily whitelisted identifier is allowed without touching its
        counter.
        """
        resolved = self.get_policy(policy)
        key = self.build_key(resolved, identifier)

        if await self.is_temporarily_whitelisted(identifier):
            logger.debug(
                "Rate limit skipped for whitelisted identifier",
                extra={"key": key, "policy": resolved.name},
            )
            return RateLimitResult(
                allowed=True,
                count=0,
                remaining=resolved.max_requests,
                reset_time=self._now() + timedelta(seconds=resolved.window_seconds),
                limit=resolved.max_requests,
                window_seconds=resolved.window_seconds,
                key=key,
                whitelisted=True,
            )

        return await self.increment(
            key, resolved.window_seconds, resolved.max_requests
        )

    async def status_for(
        self, policy: Union[str, RateLimitPolicy], identifier: str
    ) -> Optional[RateLimitStatus]:
        return await self.get_status(self.build_key(self.get_policy(policy), identifier))

    async def reset_for(
        self, policy: Union[str, RateLimitPolicy], identifier: str
    ) -> bool:
        return await self.reset_key(self.build_key(self.get_policy(policy), identifier))

    # Administration

    async def reset_all(self) -> int:
        """
        Delete every rate limit counter.

        Temporary whitelist entries live in their own namespace and survive.

        Returns:
            Number of counters deleted (0 on failure)
        """
        pattern = CacheKey.pattern(CacheNamespace.RATE_LIMIT)
        try:
            keys = await self.store.keys(pattern)
            deleted = 0
            for start in range(0, len(keys), _DELETE_CHUNK_SIZE):
                deleted += await self.store.delete(
                    *keys[start : start + _DELETE_CHUNK_SIZE]
                )
        except CacheStoreException as e:
            logger.error(
                f"Failed to reset all rate limits: {e.message}",
                extra={
                    "operation": "reset_all",
                    "key": pattern,
                    "error_code": e.error_code,
                },
            )
            return 0

        logger.warning("All rate limits reset", extra={"keys_deleted": deleted})
        return deleted

    async def add_temporary_whitelist(
        self, identifier: str, duration_seconds: Optional[int] = None
    ) -> bool:
        """Exempt an identifier from every policy until the entry expires."""
        key = self.whitelist_key(identifier)
        duration = duration_seconds or self.whitelist_seconds
        try:
            await self.store.set(key, "1", ttl_seconds=duration)
        except CacheStoreException as e:
            logger.error(
                f"Failed to add temporary whitelist for {key}: {e.message}",
                extra={"operation": "add_temporary_whitelist", "key": key},
            )
            return False

        logger.info(
            "Temporary whitelist added",
            extra={"key": key, "duration_seconds": duration},
        )
        return True

    async def remove_temporary_whitelist(self, identifier: str) -> bool:
        key = self.whitelist_key(identifier)
        try:
            await self.store.delete(key)
        except CacheStoreException as e:
            logger.error(
                f"Failed to remove temporary whitelist for {key}: {e.message}",
                extra={"operation": "remove_temporary_whitelist", "key": key},
            )
            return False

        logger.info("Temporary whitelist removed", extra={"key": key})
        return True

    async def is_temporarily_whitelisted(self, identifier: str) -> bool:
        """False when absent or when the store cannot answer."""
        key = self.whitelist_key(identifier)
        try:
            return await self.store.get(key) == "1"
        except CacheStoreException as e:
            logger.error(
                f"Failed to check temporary whitelist for {key}: {e.message}",
                extra={"operation": "is_temporarily_whitelisted", "key": key},
            )
            return False

    async def check_health(self) -> RateLimitHealth:
        """
        Write, read back and delete a short-lived key in one round trip.

        An unhealthy store means every check is currently failing open.
        """
        start = time.perf_counter()
        try:
            pipeline = self.store.pipeline()
            pipeline.set(_HEALTH_CHECK_KEY, "ok", ttl_seconds=5)
            pipeline.get(_HEALTH_CHECK_KEY)
            pipeline.delete(_HEALTH_CHECK_KEY)
            _, value, _ = await pipeline.execute()

            if value != "ok":
                raise StoreProtocolException(
                    message="Health check read back an unexpected value",
                    operation="check_health",
                    key=_HEALTH_CHECK_KEY,
                    response=value,
                )

        except CacheStoreException as e:
            logger.error(
                f"Rate limit health check failed: {e.message}",
                extra={"operation": "check_health", "error_code": e.error_code},
            )
            return RateLimitHealth(
                healthy=False, fallback_active=True, last_error=e.message
            )

        latency_ms = (time.perf_counter() - start) * 1000
        return RateLimitHealth(healthy=True, latency_ms=round(latency_ms, 2))


def seconds_until(reset_time: datetime, now: Optional[datetime] = None) -> int:
    """Whole seconds until ``reset_time``, never negative."""
    now = now or _utcnow()
    return max(0, math.ceil((reset_time - now).total_seconds()))
