"""
Cache Invalidation Coordinator

Maps task and category mutations to the exact keys and patterns that must be
dropped. Deletes are issued one after another with no cross-key transaction;
a crash part-way leaves staleness that the namespace TTLs bound.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from opentelemetry import trace

from ...domain.cache.value_objects import CacheKey, CacheNamespace
from .task_cache import TaskCache

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MutationEntity(str, Enum):
    TASK = "task"
    CATEGORY = "category"


class MutationAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    BULK = "bulk"


@dataclass(frozen=True)
class CacheMutation:
    """A domain write that makes cached reads stale."""

    entity: MutationEntity
    action: MutationAction
    user_id: str
    entity_id: Optional[str] = None


class CacheInvalidationCoordinator:
    """
    Invalidation policy for the task domain.

    Single-entity writes drop the entity detail key, the owner's list for
    that entity type and the owner's stats. Bulk writes drop the owner's
    whole cache footprint.
    """

    def __init__(self, task_cache: TaskCache):
        self.task_cache = task_cache

    async def handle(self, mutation: CacheMutation) -> None:
        """Dispatch a mutation event to the matching invalidation rule."""
        with tracer.start_as_current_span("cache.invalidate") as span:
            span.set_attribute("mutation.entity", mutation.entity.value)
            span.set_attribute("mutation.action", mutation.action.value)

            if mutation.action == MutationAction.BULK:
                if mutation.entity == MutationEntity.TASK:
                    await self.bulk_mutation(
                        mutation.user_id,
                        task_ids=[mutation.entity_id] if mutation.entity_id else (),
                    )
                else:
                    await self.bulk_mutation(
                        mutation.user_id,
                        category_ids=[mutation.entity_id] if mutation.entity_id else (),
                    )
            elif mutation.entity == MutationEntity.TASK:
                await self._task_changed(mutation.user_id, mutation.entity_id)
            else:
                await self._category_changed(mutation.user_id, mutation.entity_id)

            logger.debug(
                f"Invalidated caches for {mutation.entity.value} {mutation.action.value}",
                extra={
                    "user_id": mutation.user_id,
                    "entity_id": mutation.entity_id,
                },
            )

    # Tasks

    async def _task_changed(self, user_id: str, task_id: Optional[str]) -> None:
        if task_id:
            await self.task_cache.invalidate_task_cache(task_id)
        await self.task_cache.invalidate_user_tasks_cache(user_id)
        await self.task_cache.invalidate_user_stats_cache(user_id)

    async def task_created(self, user_id: str, task_id: Optional[str] = None) -> None:
        await self._task_changed(user_id, task_id)

    async def task_updated(self, user_id: str, task_id: str) -> None:
        await self._task_changed(user_id, task_id)

    async def task_deleted(self, user_id: str, task_id: str) -> None:
        await self._task_changed(user_id, task_id)

    # Categories

    async def _category_changed(
        self, user_id: str, category_id: Optional[str]
    ) -> None:
        if category_id:
            await self.task_cache.invalidate_category_cache(category_id)
        await self.task_cache.invalidate_user_categories_cache(user_id)
        await self.task_cache.invalidate_user_stats_cache(user_id)

    async def category_created(
        self, user_id: str, category_id: Optional[str] = None
    ) -> None:
        await self._category_changed(user_id, category_id)

    async def category_updated(self, user_id: str, category_id: str) -> None:
        await self._category_changed(user_id, category_id)

    async def category_deleted(self, user_id: str, category_id: str) -> None:
        await self._category_changed(user_id, category_id)

    # Coarse-grained invalidation

    async def invalidate_user_cache(self, user_id: str) -> None:
        """Drop a user's task list, category list, stats and cached searches."""
        await self.task_cache.invalidate_user_tasks_cache(user_id)
        await self.task_cache.invalidate_user_categories_cache(user_id)
        await self.task_cache.invalidate_user_stats_cache(user_id)
        await self.task_cache.invalidate_user_search_cache(user_id)

        logger.info("User cache fully invalidated", extra={"user_id": user_id})

    async def bulk_mutation(
        self,
        user_id: str,
        task_ids: Iterable[str] = (),
        category_ids: Iterable[str] = (),
    ) -> None:
        """Invalidate after a destructive or multi-entity write."""
        await self.invalidate_user_cache(user_id)
        for task_id in task_ids:
            await self.task_cache.invalidate_task_cache(task_id)
        for category_id in category_ids:
            await self.task_cache.invalidate_category_cache(category_id)

    async def invalidate_all_task_caches(self) -> int:
        """Drop every task detail and every user task list."""
        cache = self.task_cache.cache
        deleted = await cache.delete_by_pattern(
            CacheKey.pattern(CacheNamespace.TASK_DETAIL)
        )
        deleted += await cache.delete_by_pattern(
            CacheKey.pattern(CacheNamespace.USER_TASKS)
        )
        logger.info(f"Invalidated {deleted} task cache entries", extra={"count": deleted})
        return deleted

    async def invalidate_all_category_caches(self) -> int:
        """Drop every category detail and every user category list."""
        cache = self.task_cache.cache
        deleted = await cache.delete_by_pattern(
            CacheKey.pattern(CacheNamespace.CATEGORY_DETAIL)
        )
        deleted += await cache.delete_by_pattern(
            CacheKey.pattern(CacheNamespace.USER_CATEGORIES)
        )
        logger.info(
            f"Invalidated {deleted} category cache entries", extra={"count": deleted}
        )
        return deleted
