"""
In-Memory Store Client

Process-local StoreClient used in tests and local development. Mirrors the
Redis reply conventions the cache service and rate limiter rely on, with an
injectable clock for expiry and fault injection for outage scenarios.
"""

import fnmatch
import math
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import (
    CacheStoreException,
    StoreProtocolException,
    StoreUnavailableException,
)
from .store_client import StoreClient, StorePipeline


class InMemoryPipeline(StorePipeline):
    """Queues commands and applies them in order on execute."""

    def __init__(self, store: "InMemoryStoreClient"):
        self._store = store
        self._commands: List[Tuple[str, tuple, dict]] = []

    def _queue(self, name: str, *args, **kwargs) -> "InMemoryPipeline":
        self._commands.append((name, args, kwargs))
        return self

    def get(self, key: str) -> "InMemoryPipeline":
        return self._queue("get", key)

    def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> "InMemoryPipeline":
        return self._queue("set", key, value, ttl_seconds=ttl_seconds, nx=nx)

    def delete(self, *keys: str) -> "InMemoryPipeline":
        return self._queue("delete", *keys)

    def incr(self, key: str) -> "InMemoryPipeline":
        return self._queue("incr", key)

    def decr(self, key: str) -> "InMemoryPipeline":
        return self._queue("decr", key)

    def expire(self, key: str, seconds: int) -> "InMemoryPipeline":
        return self._queue("expire", key, seconds)

    def ttl(self, key: str) -> "InMemoryPipeline":
        return self._queue("ttl", key)

    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        self._store._round_trip("pipeline")
        results = []
        for name, args, kwargs in self._commands:
            try:
                self._store._check_command(name)
                results.append(getattr(self._store, f"_{name}")(*args, **kwargs))
            except StoreProtocolException as e:
                if raise_on_error:
                    raise
                results.append(e)
        return results

    def __len__(self) -> int:
        return len(self._commands)


class InMemoryStoreClient(StoreClient):
    """
    Dictionary-backed store with passive expiry.

    Args:
        prefix: Deployment prefix applied to every key
        clock: Callable returning the current time in seconds
    """

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.monotonic):
        self.prefix = prefix
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self.round_trips = 0
        self.fail_with: Optional[CacheStoreException] = None
        self.failing_commands: Dict[str, CacheStoreException] = {}

    # Fault injection

    def fail_all(self, error: Optional[CacheStoreException] = None) -> None:
        """Make every subsequent round trip raise."""
        self.fail_with = error or StoreUnavailableException(
            message="Simulated store outage"
        )

    def fail_command(
        self, name: str, error: Optional[CacheStoreException] = None
    ) -> None:
        """Make a single command fail, inside or outside pipelines."""
        self.failing_commands[name] = error or StoreProtocolException(
            message=f"Simulated {name} failure", operation=name
        )

    def recover(self) -> None:
        self.fail_with = None
        self.failing_commands.clear()

    def _round_trip(self, operation: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.round_trips += 1

    def _check_command(self, name: str) -> None:
        if name in self.failing_commands:
            raise self.failing_commands[name]

    async def _call(self, name: str, *args, **kwargs):
        self._round_trip(name)
        self._check_command(name)
        return getattr(self, f"_{name}")(*args, **kwargs)

    # Internal key handling

    def _full(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _live(self, full_key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(full_key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[full_key]
            return None
        return entry

    def _integer(self, full_key: str, operation: str) -> int:
        entry = self._live(full_key)
        if entry is None:
            return 0
        try:
            return int(entry[0])
        except ValueError:
            raise StoreProtocolException(
                message="value is not an integer or out of range",
                operation=operation,
                key=full_key,
            )

    # Commands

    def _get(self, key: str) -> Optional[str]:
        entry = self._live(self._full(key))
        return entry[0] if entry else None

    def _set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> Optional[bool]:
        full_key = self._full(key)
        if nx and self._live(full_key) is not None:
            return None
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[full_key] = (str(value), expires_at)
        return True

    def _delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            full_key = self._full(key)
            if self._live(full_key) is not None:
                del self._data[full_key]
                deleted += 1
        return deleted

    def _exists(self, key: str) -> int:
        return 1 if self._live(self._full(key)) is not None else 0

    def _incr(self, key: str, amount: int = 1) -> int:
        full_key = self._full(key)
        value = self._integer(full_key, "incr") + amount
        entry = self._live(full_key)
        expires_at = entry[1] if entry else None
        self._data[full_key] = (str(value), expires_at)
        return value

    def _decr(self, key: str) -> int:
        return self._incr(key, -1)

    def _expire(self, key: str, seconds: int) -> bool:
        full_key = self._full(key)
        entry = self._live(full_key)
        if entry is None:
            return False
        self._data[full_key] = (entry[0], self._clock() + seconds)
        return True

    def _ttl(self, key: str) -> int:
        entry = self._live(self._full(key))
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(0, math.ceil(entry[1] - self._clock()))

    def _keys(self, pattern: str) -> List[str]:
        full_pattern = self._full(pattern)
        matched = []
        for full_key in list(self._data):
            if self._live(full_key) is None:
                continue
            if fnmatch.fnmatchcase(full_key, full_pattern):
                matched.append(full_key[len(self.prefix):])
        return matched

    # StoreClient interface

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", key)

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        return bool(await self._call("set", key, value, ttl_seconds=ttl_seconds, nx=nx))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._call("delete", *keys)

    async def exists(self, key: str) -> bool:
        return await self._call("exists", key) == 1

    async def incr(self, key: str) -> int:
        return await self._call("incr", key)

    async def decr(self, key: str) -> int:
        return await self._call("decr", key)

    async def expire(self, key: str, seconds: int) -> bool:
        return await self._call("expire", key, seconds)

    async def ttl(self, key: str) -> int:
        return await self._call("ttl", key)

    async def keys(self, pattern: str) -> List[str]:
        return await self._call("keys", pattern)

    async def ping(self) -> bool:
        self._round_trip("ping")
        return True

    async def info(self) -> Dict[str, Any]:
        self._round_trip("info")
        used_memory = sum(
            len(full_key) + len(value) for full_key, (value, _) in self._data.items()
        )
        return {"used_memory": used_memory, "redis_version": "in-memory"}

    async def dbsize(self) -> int:
        self._round_trip("dbsize")
        return sum(1 for full_key in list(self._data) if self._live(full_key))

    async def flush_prefix(self) -> int:
        keys = await self.keys("*")
        return await self.delete(*keys) if keys else 0

    def pipeline(self) -> InMemoryPipeline:
        return InMemoryPipeline(self)
