"""
Task cache application

FastAPI application factory wiring the store client, cache service, task
cache, invalidation coordinator and rate limiter into ``app.state``.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from .api.endpoints.health import router as health_router
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .infrastructure.redis.connection_factory import RedisConnectionFactory
from .infrastructure.redis.store_client import StoreClient
from .services.cache.cache_service import CacheService
from .services.cache.invalidation import CacheInvalidationCoordinator
from .services.cache.task_cache import TaskCache
from .services.rate_limiting.middleware import (
    RateLimitExceededHTTPException,
    RateLimitingMiddleware,
    rate_limit_exceeded_handler,
)
from .services.rate_limiting.rate_limiter import RateLimiter

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None, store: Optional[StoreClient] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings override; defaults to the cached environment settings
        store: Store client override; when omitted a Redis pool is created at
            startup and closed at shutdown
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting task cache",
            service=settings.SERVICE_NAME,
            environment=settings.ENVIRONMENT,
        )

        factory = None
        if store is None:
            factory = RedisConnectionFactory(settings)
            client = await factory.initialize()
        else:
            client = store

        cache_service = CacheService(client)
        task_cache = TaskCache(cache_service, settings)

        app.state.store = client
        app.state.cache_service = cache_service
        app.state.task_cache = task_cache
        app.state.invalidation = CacheInvalidationCoordinator(task_cache)
        app.state.rate_limiter = RateLimiter(client, settings)

        logger.info(
            "Task cache started",
            rate_limiting=settings.RATE_LIMIT_ENABLED,
            prefix=settings.REDIS_PREFIX,
        )

        yield

        logger.info("Shutting down task cache")
        if factory is not None:
            await factory.close()
        logger.info("Application shutdown completed")

    app = FastAPI(
        title="Task Cache",
        description="Shared cache and distributed rate limiter for the task service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        RateLimitingMiddleware,
        policy="default",
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    app.add_exception_handler(
        RateLimitExceededHTTPException, rate_limit_exceeded_handler
    )
    app.include_router(health_router)

    return app
