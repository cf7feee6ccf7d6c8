"""
Health check endpoints for the task cache.

Cache connectivity and statistics, plus rate-limit store health, counter
inspection, administrative resets and the temporary whitelist. Service
instances are read from ``app.state``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from ...services.cache.cache_service import CacheService
from ...services.rate_limiting.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


def _service(request: Request, name: str):
    instance = getattr(request.app.state, name, None)
    if instance is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service not ready: {name} not initialised",
        )
    return instance


@router.get("/")
async def health_check(request: Request) -> Dict[str, Any]:
    """Basic health check for load balancers."""
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.SERVICE_NAME,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/cache")
async def cache_health(request: Request) -> Dict[str, Any]:
    """
    Cache connectivity and statistics.

    Always answers 200: a degraded store is reported, not raised, because the
    service keeps serving with cache misses while the store is down.
    """
    cache: CacheService = _service(request, "cache_service")

    healthy = await cache.is_healthy()
    stats = await cache.get_stats()
    if not healthy:
        logger.warning("Cache health check failed, store unreachable")

    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "stats": stats.model_dump(mode="json"),
    }


@router.get("/rate-limit")
async def rate_limit_health(request: Request) -> Dict[str, Any]:
    """Rate limiter store round trip. Degraded means checks are failing open."""
    limiter: RateLimiter = _service(request, "rate_limiter")

    health = await limiter.check_health()
    return {
        "status": "healthy" if health.healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **health.model_dump(),
    }


@router.delete("/rate-limit")
async def reset_all_rate_limits(request: Request) -> Dict[str, Any]:
    """Administrative reset of every rate-limit counter."""
    limiter: RateLimiter = _service(request, "rate_limiter")
    return {"deleted": await limiter.reset_all()}


@router.put("/rate-limit/whitelist/{identifier}")
async def add_rate_limit_whitelist(
    request: Request,
    identifier: str,
    duration_seconds: Optional[int] = Query(None, ge=1),
) -> Dict[str, Any]:
    """Temporarily exempt an identifier from every rate limit policy."""
    limiter: RateLimiter = _service(request, "rate_limiter")
    duration = duration_seconds or limiter.whitelist_seconds

    if not await limiter.add_temporary_whitelist(identifier, duration):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limit store unavailable",
        )
    return {"identifier": identifier, "whitelisted": True, "duration_seconds": duration}


@router.delete("/rate-limit/whitelist/{identifier}")
async def remove_rate_limit_whitelist(
    request: Request, identifier: str
) -> Dict[str, Any]:
    limiter: RateLimiter = _service(request, "rate_limiter")

    if not await limiter.remove_temporary_whitelist(identifier):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limit store unavailable",
        )
    return {"identifier": identifier, "whitelisted": False}


@router.get("/rate-limit/{policy}/{identifier}")
async def rate_limit_status(
    request: Request, policy: str, identifier: str
) -> Dict[str, Any]:
    """Counter state of an identifier under a policy, without incrementing it."""
    limiter: RateLimiter = _service(request, "rate_limiter")
    try:
        resolved = limiter.get_policy(policy)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    current = await limiter.status_for(resolved, identifier)
    count = current.count if current else 0

    return {
        "policy": resolved.name,
        "identifier": identifier,
        "key": limiter.build_key(resolved, identifier),
        "count": count,
        "limit": resolved.max_requests,
        "remaining": max(0, resolved.max_requests - count),
        "window_seconds": resolved.window_seconds,
        "ttl": current.ttl if current else None,
    }


@router.delete("/rate-limit/{policy}/{identifier}")
async def reset_rate_limit(
    request: Request, policy: str, identifier: str
) -> Dict[str, Any]:
    """Administrative reset of a rate-limit counter."""
    limiter: RateLimiter = _service(request, "rate_limiter")
    try:
        resolved = limiter.get_policy(policy)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if not await limiter.reset_for(resolved, identifier):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limit store unavailable",
        )

    logger.info(
        f"Rate limit reset for {identifier} under {resolved.name}",
        extra={"policy": resolved.name, "identifier": identifier},
    )
    return {"policy": resolved.name, "identifier": identifier, "reset": True}
