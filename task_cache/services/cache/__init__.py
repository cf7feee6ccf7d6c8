"""
Cache Services

Generic fail-soft cache service, task-domain cache helpers and the
invalidation coordinator that keeps them consistent with writes.
"""

from .cache_service import CacheService, CacheStats
from .task_cache import TaskCache
from .invalidation import (
    CacheInvalidationCoordinator,
    CacheMutation,
    MutationAction,
    MutationEntity,
)

__all__ = [
    "CacheService",
    "CacheStats",
    "TaskCache",
    "CacheInvalidationCoordinator",
    "CacheMutation",
    "MutationAction",
    "MutationEntity",
]
