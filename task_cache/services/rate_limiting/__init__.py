"""
Rate Limiting Services

Distributed fixed-window rate limiting over the shared store, with a
FastAPI middleware and a route dependency that answer HTTP 429.
"""

from .rate_limiter import (
    DEFAULT_POLICIES,
    RateLimiter,
    RateLimitHealth,
    RateLimitPolicy,
    RateLimitResult,
    RateLimitStatus,
)
from .middleware import (
    RateLimitExceededHTTPException,
    RateLimitingMiddleware,
    default_key_func,
    rate_limit_dependency,
    rate_limit_exceeded_handler,
)

__all__ = [
    "DEFAULT_POLICIES",
    "RateLimiter",
    "RateLimitHealth",
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimitStatus",
    "RateLimitExceededHTTPException",
    "RateLimitingMiddleware",
    "default_key_func",
    "rate_limit_dependency",
    "rate_limit_exceeded_handler",
]
