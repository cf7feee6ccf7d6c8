"""
Task Cache

Domain-scoped helpers over the generic cache service: per-user task and
category lists, per-user stats, task and category detail, and parameterized
search results. Keys and default TTLs come from the namespace table.
"""

import logging
from typing import Any, Dict, List, Optional

from ...core.config import Settings
from ...domain.cache.codec import Codec
from ...domain.cache.value_objects import CacheKey, CacheNamespace, namespace_ttl
from .cache_service import CacheService

logger = logging.getLogger(__name__)


class TaskCache:
    """
    Read-through helpers used by the task and category services.

    Args:
        cache: Generic cache service
        settings: Optional settings supplying per-namespace TTL overrides
    """

    def __init__(self, cache: CacheService, settings: Optional[Settings] = None):
        self.cache = cache
        self.settings = settings

    def ttl_for(self, namespace: CacheNamespace, ttl_seconds: Optional[int] = None) -> int:
        return ttl_seconds or namespace_ttl(namespace, self.settings)

    def _key(self, builder, *args) -> Optional[str]:
        """Build a key, logging and returning None for unusable identifiers."""
        try:
            return builder(*args).value
        except ValueError as e:
            logger.error(
                f"Cannot build cache key with {builder.__name__}: {e}",
                extra={"operation": builder.__name__, "key": repr(args)},
            )
            return None

    async def _cache(
        self,
        namespace: CacheNamespace,
        key: Optional[str],
        value: Any,
        ttl_seconds: Optional[int],
        codec: Optional[Codec] = None,
    ) -> None:
        if key is None:
            return
        await self.cache.set(key, value, self.ttl_for(namespace, ttl_seconds), codec)

    async def _get(self, key: Optional[str], codec: Optional[Codec] = None) -> Optional[Any]:
        if key is None:
            return None
        return await self.cache.get(key, codec)

    async def _invalidate(self, key: Optional[str]) -> None:
        if key is None:
            return
        await self.cache.delete(key)

    # User task lists

    async def cache_user_tasks(
        self,
        user_id: str,
        tasks: List[Any],
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.user_tasks, user_id)
        await self._cache(CacheNamespace.USER_TASKS, key, tasks, ttl_seconds, codec)

    async def get_cached_user_tasks(
        self, user_id: str, codec: Optional[Codec] = None
    ) -> Optional[List[Any]]:
        return await self._get(self._key(CacheKey.user_tasks, user_id), codec)

    async def invalidate_user_tasks_cache(self, user_id: str) -> None:
        await self._invalidate(self._key(CacheKey.user_tasks, user_id))

    # User category lists

    async def cache_user_categories(
        self,
        user_id: str,
        categories: List[Any],
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.user_categories, user_id)
        await self._cache(
            CacheNamespace.USER_CATEGORIES, key, categories, ttl_seconds, codec
        )

    async def get_cached_user_categories(
        self, user_id: str, codec: Optional[Codec] = None
    ) -> Optional[List[Any]]:
        return await self._get(self._key(CacheKey.user_categories, user_id), codec)

    async def invalidate_user_categories_cache(self, user_id: str) -> None:
        await self._invalidate(self._key(CacheKey.user_categories, user_id))

    # User stats

    async def cache_user_stats(
        self,
        user_id: str,
        stats: Any,
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.user_stats, user_id)
        await self._cache(CacheNamespace.USER_STATS, key, stats, ttl_seconds, codec)

    async def get_cached_user_stats(
        self, user_id: str, codec: Optional[Codec] = None
    ) -> Optional[Any]:
        return await self._get(self._key(CacheKey.user_stats, user_id), codec)

    async def invalidate_user_stats_cache(self, user_id: str) -> None:
        await self._invalidate(self._key(CacheKey.user_stats, user_id))

    # Task detail

    async def cache_task_detail(
        self,
        task_id: str,
        task: Any,
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.task_detail, task_id)
        await self._cache(CacheNamespace.TASK_DETAIL, key, task, ttl_seconds, codec)

    async def get_cached_task_detail(
        self, task_id: str, codec: Optional[Codec] = None
    ) -> Optional[Any]:
        return await self._get(self._key(CacheKey.task_detail, task_id), codec)

    async def invalidate_task_cache(self, task_id: str) -> None:
        await self._invalidate(self._key(CacheKey.task_detail, task_id))

    # Category detail

    async def cache_category_detail(
        self,
        category_id: str,
        category: Any,
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.category_detail, category_id)
        await self._cache(
            CacheNamespace.CATEGORY_DETAIL, key, category, ttl_seconds, codec
        )

    async def get_cached_category_detail(
        self, category_id: str, codec: Optional[Codec] = None
    ) -> Optional[Any]:
        return await self._get(self._key(CacheKey.category_detail, category_id), codec)

    async def invalidate_category_cache(self, category_id: str) -> None:
        await self._invalidate(self._key(CacheKey.category_detail, category_id))

    # Search results

    async def cache_search_results(
        self,
        user_id: str,
        query: str,
        filters: Optional[Dict[str, Any]],
        results: Any,
        ttl_seconds: Optional[int] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        key = self._key(CacheKey.search_results, user_id, query, filters)
        await self._cache(
            CacheNamespace.SEARCH_RESULTS, key, results, ttl_seconds, codec
        )

    async def get_cached_search_results(
        self,
        user_id: str,
        query: str,
        filters: Optional[Dict[str, Any]] = None,
        codec: Optional[Codec] = None,
    ) -> Optional[Any]:
        return await self._get(
            self._key(CacheKey.search_results, user_id, query, filters), codec
        )

    async def invalidate_user_search_cache(self, user_id: str) -> int:
        """Drop every cached search of a user; returns keys deleted."""
        try:
            pattern = CacheKey.pattern(CacheNamespace.SEARCH_RESULTS, user_id=user_id)
        except ValueError as e:
            logger.error(
                f"Cannot build search pattern for user: {e}",
                extra={"operation": "invalidate_user_search_cache", "key": user_id},
            )
            return 0
        return await self.cache.delete_by_pattern(pattern)
