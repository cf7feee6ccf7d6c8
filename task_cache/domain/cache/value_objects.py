"""
Cache Value Objects

Immutable value objects for the cache domain: the namespace table that maps
each domain concept to a key template and default TTL, validated cache keys,
and the cache entry / rate-limit counter records.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

MAX_KEY_LENGTH = 250

_FORBIDDEN_KEY_CHARS = set("*?[]")

# Only the trailing part of a template may contain the separator
_SEPARATOR_PARTS = frozenset({"identifier"})


class CacheNamespace(str, Enum):
    """Domain concepts that own a slice of the key space."""

    USER_TASKS = "user-tasks"
    USER_CATEGORIES = "user-categories"
    USER_STATS = "user-stats"
    TASK_DETAIL = "task-detail"
    CATEGORY_DETAIL = "category-detail"
    SEARCH_RESULTS = "search-results"
    RATE_LIMIT = "rate-limit"
    RATE_LIMIT_WHITELIST = "rate-limit-whitelist"


@dataclass(frozen=True)
class NamespaceSpec:
    """Key template and default TTL for one namespace."""

    template: str
    default_ttl: int
    ttl_setting: str


NAMESPACES: Dict[CacheNamespace, NamespaceSpec] = {
    CacheNamespace.USER_TASKS: NamespaceSpec(
        "user:{user_id}:tasks", 180, "CACHE_TTL_USER_TASKS"
    ),
    CacheNamespace.USER_CATEGORIES: NamespaceSpec(
        "user:{user_id}:categories", 600, "CACHE_TTL_USER_CATEGORIES"
    ),
    CacheNamespace.USER_STATS: NamespaceSpec(
        "user:{user_id}:stats", 300, "CACHE_TTL_USER_STATS"
    ),
    CacheNamespace.TASK_DETAIL: NamespaceSpec(
        "task:{task_id}", 300, "CACHE_TTL_TASK_DETAIL"
    ),
    CacheNamespace.CATEGORY_DETAIL: NamespaceSpec(
        "category:{category_id}", 600, "CACHE_TTL_CATEGORY_DETAIL"
    ),
    CacheNamespace.SEARCH_RESULTS: NamespaceSpec(
        "search:{user_id}:{digest}", 120, "CACHE_TTL_SEARCH_RESULTS"
    ),
    CacheNamespace.RATE_LIMIT: NamespaceSpec(
        "ratelimit:{policy}:{identifier}", 900, "CACHE_TTL_RATE_LIMIT"
    ),
    CacheNamespace.RATE_LIMIT_WHITELIST: NamespaceSpec(
        "ratelimit-whitelist:{identifier}", 3600, "RATE_LIMIT_WHITELIST_SECONDS"
    ),
}


def namespace_ttl(namespace: CacheNamespace, settings: Any = None) -> int:
    """Default TTL of a namespace, overridden by settings when provided."""
    spec = NAMESPACES[namespace]
    if settings is not None:
        return getattr(settings, spec.ttl_setting, spec.default_ttl)
    return spec.default_ttl


def _validate_part(name: str, value: Any) -> str:
    part = str(value)
    if not part:
        raise ValueError(f"Cache key part '{name}' cannot be empty")
    if any(char.isspace() for char in part):
        raise ValueError(f"Cache key part '{name}' cannot contain whitespace")
    if _FORBIDDEN_KEY_CHARS & set(part):
        raise ValueError(f"Cache key part '{name}' cannot contain glob characters")
    if ":" in part and name not in _SEPARATOR_PARTS:
        raise ValueError(f"Cache key part '{name}' cannot contain ':'")
    return part


def search_digest(query: str, filters: Optional[Dict[str, Any]] = None) -> str:
    """
    Deterministic digest of a search query and its filter set.

    Filters are canonicalised as sorted JSON, so the same filters given in a
    different order share a digest, and query/filter boundaries cannot blur.
    """
    canonical = json.dumps(
        {"q": query or "", "f": filters or {}},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Enforces key naming conventions and provides validation.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise ValueError("Cache key cannot be empty")

        if len(self.value) > MAX_KEY_LENGTH:
            raise ValueError(f"Cache key too long (max {MAX_KEY_LENGTH} characters)")

        if any(char.isspace() for char in self.value):
            raise ValueError("Cache key cannot contain whitespace")

    @classmethod
    def build(cls, namespace: CacheNamespace, **parts: Any) -> "CacheKey":
        """Render a namespace template with validated parts."""
        clean = {name: _validate_part(name, value) for name, value in parts.items()}
        return cls(NAMESPACES[namespace].template.format(**clean))

    @classmethod
    def pattern(cls, namespace: CacheNamespace, **parts: Any) -> str:
        """Glob pattern over a namespace; unspecified parts match anything."""
        template = NAMESPACES[namespace].template
        clean = {name: _validate_part(name, value) for name, value in parts.items()}
        return template.format_map(_Wildcards(clean))

    @classmethod
    def user_tasks(cls, user_id: Any) -> "CacheKey":
        return cls.build(CacheNamespace.USER_TASKS, user_id=user_id)

    @classmethod
    def user_categories(cls, user_id: Any) -> "CacheKey":
        return cls.build(CacheNamespace.USER_CATEGORIES, user_id=user_id)

    @classmethod
    def user_stats(cls, user_id: Any) -> "CacheKey":
        return cls.build(CacheNamespace.USER_STATS, user_id=user_id)

    @classmethod
    def task_detail(cls, task_id: Any) -> "CacheKey":
        return cls.build(CacheNamespace.TASK_DETAIL, task_id=task_id)

    @classmethod
    def category_detail(cls, category_id: Any) -> "CacheKey":
        return cls.build(CacheNamespace.CATEGORY_DETAIL, category_id=category_id)

    @classmethod
    def search_results(
        cls, user_id: Any, query: str, filters: Optional[Dict[str, Any]] = None
    ) -> "CacheKey":
        return cls.build(
            CacheNamespace.SEARCH_RESULTS,
            user_id=user_id,
            digest=search_digest(query, filters),
        )

    @classmethod
    def rate_limit(cls, policy: str, identifier: Any) -> "CacheKey":
        return cls.build(CacheNamespace.RATE_LIMIT, policy=policy, identifier=identifier)

    @classmethod
    def rate_limit_whitelist(cls, identifier: Any) -> "CacheKey":
        return cls.build(CacheNamespace.RATE_LIMIT_WHITELIST, identifier=identifier)

    def __str__(self) -> str:
        return self.value


class _Wildcards(dict):
    def __missing__(self, key: str) -> str:
        return "*"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A value as written to the store. ``ttl_seconds=None`` never expires."""

    key: str
    value: T
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        if self.ttl_seconds is not None and self.ttl_seconds <= 0:
            raise ValueError("TTL must be positive")

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.ttl_seconds is None:
            return None
        return self.cached_at + timedelta(seconds=self.ttl_seconds)


@dataclass(frozen=True)
class RateLimitCounter:
    """Snapshot of a rate-limit counter as reported by the store."""

    key: str
    count: int
    window_seconds: int
    reset_at: Optional[datetime]

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("Rate limit count cannot be negative")

    def is_exceeded(self, max_requests: int) -> bool:
        return self.count > max_requests
