"""
Cache Operation Outcomes

Explicit result of a fail-soft store operation: the value the caller gets,
and whether it came from the store or from a logged fallback.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from ...infrastructure.redis.exceptions import CacheStoreException

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    OK = "ok"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CacheOutcome(Generic[T]):
    """
    Value of a cache operation plus how it was obtained.

    ``FALLBACK`` means the store failed and ``value`` is the documented
    default for the operation; ``error`` carries the logged failure.
    """

    status: OutcomeStatus
    value: Optional[T] = None
    error: Optional[CacheStoreException] = None

    @classmethod
    def hit(cls, value: T) -> "CacheOutcome[T]":
        return cls(OutcomeStatus.HIT, value)

    @classmethod
    def miss(cls) -> "CacheOutcome[T]":
        return cls(OutcomeStatus.MISS)

    @classmethod
    def ok(cls, value: T = None) -> "CacheOutcome[T]":
        return cls(OutcomeStatus.OK, value)

    @classmethod
    def fallback(cls, default: T, error: CacheStoreException) -> "CacheOutcome[T]":
        return cls(OutcomeStatus.FALLBACK, default, error)

    @property
    def is_fallback(self) -> bool:
        return self.status == OutcomeStatus.FALLBACK

    @property
    def is_hit(self) -> bool:
        return self.status == OutcomeStatus.HIT
