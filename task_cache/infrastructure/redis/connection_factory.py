"""
Redis Connection Factory

Builds the shared connection pool with short timeouts and hands out
prefix-scoped store clients.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from opentelemetry import trace
from opentelemetry.instrumentation.redis import RedisInstrumentor

from ...core.config import Settings, get_settings
from .exceptions import StoreUnavailableException
from .redis_store_client import RedisStoreClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RedisConnectionFactory:
    """
    Factory for the Redis connection pool.

    Command timeouts are kept short so a degraded store produces a fast,
    logged fallback in the cache and rate limiter instead of a hung request.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[RedisStoreClient] = None
        self._lock = asyncio.Lock()

        try:
            RedisInstrumentor().instrument()
            logger.info("Redis OpenTelemetry instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to enable Redis OpenTelemetry instrumentation: {e}")

    async def initialize(self) -> RedisStoreClient:
        """Create the pool and verify connectivity.

        A failed ping is logged but does not abort startup: callers fall back
        to cache misses and allowed requests until the store comes back.
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            with tracer.start_as_current_span("redis.connection_factory.initialize"):
                self._pool = ConnectionPool.from_url(
                    self.settings.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.settings.REDIS_CONNECTION_TIMEOUT,
                    socket_timeout=self.settings.REDIS_OPERATION_TIMEOUT,
                    max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                    health_check_interval=30,
                )
                self._client = RedisStoreClient(
                    Redis(connection_pool=self._pool),
                    prefix=self.settings.REDIS_PREFIX,
                )

                try:
                    await self._client.ping()
                    logger.info(
                        "Redis connection pool initialized",
                        extra={
                            "max_connections": self.settings.REDIS_MAX_CONNECTIONS,
                            "prefix": self.settings.REDIS_PREFIX,
                        },
                    )
                except StoreUnavailableException as e:
                    logger.error(
                        f"Redis not reachable at startup, continuing degraded: {e}",
                        extra={"error_code": e.error_code, "details": e.details},
                    )

            return self._client

    @property
    def client(self) -> RedisStoreClient:
        if self._client is None:
            raise RuntimeError("RedisConnectionFactory.initialize() was not awaited")
        return self._client

    async def close(self) -> None:
        """Close client and pool."""
        async with self._lock:
            if self._client is not None:
                await self._client.close()
                self._client = None
            if self._pool is not None:
                try:
                    await self._pool.disconnect()
                except RedisError as e:
                    logger.warning(f"Failed to disconnect Redis pool: {e}")
                self._pool = None
            logger.info("Redis connection factory closed")

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "initialized": self._client is not None,
            "prefix": self.settings.REDIS_PREFIX,
            "max_connections": self.settings.REDIS_MAX_CONNECTIONS,
            "connection_timeout": self.settings.REDIS_CONNECTION_TIMEOUT,
            "operation_timeout": self.settings.REDIS_OPERATION_TIMEOUT,
        }
