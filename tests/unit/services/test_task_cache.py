"""
Unit tests for the task-domain cache helpers.
"""

import logging
from typing import List

import pytest
from pydantic import BaseModel

from task_cache.domain.cache.codec import PydanticCodec


class TaskSummary(BaseModel):
    id: str
    title: str


class TestTaskCache:
    """Test TaskCache helpers."""

    @pytest.mark.asyncio
    async def test_user_tasks_round_trip_with_namespace_ttl(self, task_cache, store):
        tasks = [{"id": "t1", "title": "Buy milk"}]

        await task_cache.cache_user_tasks("42", tasks)

        assert await task_cache.get_cached_user_tasks("42") == tasks
        assert await store.ttl("user:42:tasks") == 180

    @pytest.mark.asyncio
    async def test_explicit_ttl_overrides_namespace_default(self, task_cache, store):
        await task_cache.cache_user_categories("42", [], ttl_seconds=5)

        assert await store.ttl("user:42:categories") == 5

    @pytest.mark.asyncio
    async def test_detail_and_stats_helpers(self, task_cache, store):
        await task_cache.cache_task_detail("t1", {"id": "t1"})
        await task_cache.cache_category_detail("c1", {"id": "c1"})
        await task_cache.cache_user_stats("42", {"open": 3})

        assert await task_cache.get_cached_task_detail("t1") == {"id": "t1"}
        assert await task_cache.get_cached_category_detail("c1") == {"id": "c1"}
        assert await task_cache.get_cached_user_stats("42") == {"open": 3}
        assert await store.ttl("task:t1") == 300
        assert await store.ttl("category:c1") == 600

        await task_cache.invalidate_task_cache("t1")
        await task_cache.invalidate_category_cache("c1")
        await task_cache.invalidate_user_stats_cache("42")

        assert await task_cache.get_cached_task_detail("t1") is None
        assert await task_cache.get_cached_category_detail("c1") is None
        assert await task_cache.get_cached_user_stats("42") is None

    @pytest.mark.asyncio
    async def test_typed_codec(self, task_cache):
        codec = PydanticCodec(List[TaskSummary])
        tasks = [TaskSummary(id="t1", title="Buy milk")]

        await task_cache.cache_user_tasks("42", tasks, codec=codec)
        cached = await task_cache.get_cached_user_tasks("42", codec=codec)

        assert cached == tasks

    @pytest.mark.asyncio
    async def test_search_results_keyed_by_query_and_filters(self, task_cache):
        await task_cache.cache_search_results(
            "42", "milk", {"status": "open", "priority": "high"}, ["t1"]
        )

        assert await task_cache.get_cached_search_results(
            "42", "milk", {"priority": "high", "status": "open"}
        ) == ["t1"]
        assert await task_cache.get_cached_search_results("42", "milk") is None
        assert (
            await task_cache.get_cached_search_results(
                "43", "milk", {"status": "open", "priority": "high"}
            )
            is None
        )

    @pytest.mark.asyncio
    async def test_search_ttl(self, task_cache, store, clock):
        await task_cache.cache_search_results("42", "milk", None, ["t1"])

        clock.advance(120)

        assert await task_cache.get_cached_search_results("42", "milk") is None

    @pytest.mark.asyncio
    async def test_invalidate_user_search_cache(self, task_cache):
        await task_cache.cache_search_results("42", "milk", None, ["t1"])
        await task_cache.cache_search_results("42", "bread", None, ["t2"])
        await task_cache.cache_search_results("43", "milk", None, ["t3"])

        assert await task_cache.invalidate_user_search_cache("42") == 2
        assert await task_cache.get_cached_search_results("43", "milk") == ["t3"]

    @pytest.mark.asyncio
    async def test_search_invalidation_stays_inside_one_user(
        self, task_cache, store, caplog
    ):
        await task_cache.cache_search_results("u1", "milk", None, ["t1"])
        await task_cache.cache_search_results("u10", "milk", None, ["t2"])

        with caplog.at_level(logging.ERROR):
            await task_cache.cache_search_results("u1:team", "milk", None, ["t3"])
            assert await task_cache.get_cached_search_results("u1:team", "milk") is None

        assert len(await store.keys("search:*")) == 2
        assert await task_cache.invalidate_user_search_cache("u1") == 1
        assert await task_cache.get_cached_search_results("u10", "milk") == ["t2"]

    @pytest.mark.asyncio
    async def test_unsafe_identifier_is_a_logged_no_op(self, task_cache, store, caplog):
        with caplog.at_level(logging.ERROR):
            await task_cache.cache_user_tasks("4*", [])
            assert await task_cache.get_cached_user_tasks("4*") is None
            assert await task_cache.invalidate_user_search_cache("*") == 0

        assert await store.keys("*") == []
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 3
