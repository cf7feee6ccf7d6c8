"""
Store Client Interface

Narrow command interface over a Redis-class key-value store. The cache service
and rate limiter depend only on this interface, so a Redis connection and the
in-memory double are interchangeable.

Keys passed to a store client are logical keys; the client applies the
deployment prefix on the way in and strips it on the way out.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class StorePipeline(ABC):
    """
    Batch of store commands sent in one round trip.

    Commands execute sequentially on the server but are not transactional:
    a failing command does not roll back the ones before it.
    """

    @abstractmethod
    def get(self, key: str) -> "StorePipeline":
        ...

    @abstractmethod
    def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> "StorePipeline":
        ...

    @abstractmethod
    def delete(self, *keys: str) -> "StorePipeline":
        ...

    @abstractmethod
    def incr(self, key: str) -> "StorePipeline":
        ...

    @abstractmethod
    def decr(self, key: str) -> "StorePipeline":
        ...

    @abstractmethod
    def expire(self, key: str, seconds: int) -> "StorePipeline":
        ...

    @abstractmethod
    def ttl(self, key: str) -> "StorePipeline":
        ...

    @abstractmethod
    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        """
        Send the queued commands and return one result per command.

        Args:
            raise_on_error: When False, a command that the store rejected is
                returned in place as a StoreProtocolException instead of
                aborting the whole batch.

        Raises:
            StoreUnavailableException: If the round trip itself failed
            StoreProtocolException: If a command failed and raise_on_error is set
        """

    @abstractmethod
    def __len__(self) -> int:
        ...


class StoreClient(ABC):
    """Command interface of the shared key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        """Set a value, with an expiry when ttl_seconds is given."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        ...

    @abstractmethod
    async def decr(self, key: str) -> int:
        ...

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining seconds; -1 when the key has no expiry, -2 when absent."""

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]:
        """List logical keys matching a glob pattern."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def info(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def dbsize(self) -> int:
        ...

    @abstractmethod
    async def flush_prefix(self) -> int:
        """Delete every key under this client's prefix."""

    @abstractmethod
    def pipeline(self) -> StorePipeline:
        ...

    async def close(self) -> None:
        """Release connections held by the client."""
