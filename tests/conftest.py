"""
Main pytest configuration for task cache tests.

Shared fixtures: a simulated clock, in-memory store clients and the services
built on top of them.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"

from task_cache.core.config import Settings
from task_cache.infrastructure.redis.memory_store import InMemoryStoreClient
from task_cache.services.cache.cache_service import CacheService
from task_cache.services.cache.invalidation import CacheInvalidationCoordinator
from task_cache.services.cache.task_cache import TaskCache
from task_cache.services.rate_limiting.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock advanced by hand."""

    EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __init__(self, start: float = 1000.0):
        self.start = start
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def utcnow(self) -> datetime:
        return self.EPOCH + timedelta(seconds=self.now - self.start)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        REDIS_PREFIX="task:",
        RATE_LIMIT_MAX_REQUESTS=3,
        RATE_LIMIT_WINDOW_SECONDS=60,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store with the deployment prefix and a simulated clock."""
    return InMemoryStoreClient(prefix="task:", clock=clock)


@pytest.fixture
def failing_store(clock):
    """Store that raises on every call."""
    failing = InMemoryStoreClient(prefix="task:", clock=clock)
    failing.fail_all()
    return failing


@pytest.fixture
def cache_service(store):
    return CacheService(store)


@pytest.fixture
def task_cache(cache_service, test_settings):
    return TaskCache(cache_service, test_settings)


@pytest.fixture
def invalidation(task_cache):
    return CacheInvalidationCoordinator(task_cache)


@pytest.fixture
def rate_limiter(store, test_settings, clock):
    return RateLimiter(store, test_settings, now=clock.utcnow)
