"""
Rate Limiting Middleware

FastAPI middleware and route dependency for rate limiting.
Provides HTTP 429 responses with retry-after and quota headers.
"""

import inspect
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Union

import structlog
from fastapi import HTTPException, Request, Response, status
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .rate_limiter import RateLimiter, RateLimitPolicy, RateLimitResult

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)

KeyFunc = Callable[[Request], Union[str, Awaitable[str]]]

DEFAULT_EXCLUDE_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


def get_client_ip(request: Request) -> str:
    """Client IP address, honouring proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def default_key_func(request: Request) -> str:
    """Authenticated user when known, client IP otherwise."""
    user_id = request.headers.get("X-User-ID")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


async def _identify(key_func: KeyFunc, request: Request) -> str:
    identifier = key_func(request)
    if inspect.isawaitable(identifier):
        identifier = await identifier
    return identifier


def rate_limit_headers(result: RateLimitResult) -> dict:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_time.timestamp())),
    }
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def rate_limit_body(result: RateLimitResult) -> dict:
    return {
        "success": False,
        "message": RATE_LIMIT_MESSAGE,
        "error": {
            "code": "RATE_LIMIT_EXCEEDED",
            "details": {
                "limit": result.limit,
                "window_seconds": result.window_seconds,
                "retry_after": result.retry_after,
            },
        },
        "meta": {"timestamp": datetime.now(timezone.utc).isoformat()},
    }


def rate_limit_response(result: RateLimitResult) -> JSONResponse:
    """HTTP 429 Too Many Requests response for a rejected request."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=rate_limit_body(result),
        headers=rate_limit_headers(result),
    )


class RateLimitExceededHTTPException(HTTPException):
    """Raised by route dependencies when a request is over quota."""

    def __init__(self, result: RateLimitResult):
        self.result = result
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=rate_limit_body(result),
            headers=rate_limit_headers(result),
        )


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededHTTPException
) -> JSONResponse:
    """Render the exception with the same body the middleware uses."""
    return rate_limit_response(exc.result)


def _limiter_from(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    Applies one rate limit policy to every request that is not excluded.

    The limiter is read from ``app.state.rate_limiter`` at request time, so the
    middleware can be added before the application lifespan has built it.
    """

    def __init__(
        self,
        app,
        policy: Union[str, RateLimitPolicy] = "general",
        key_func: Optional[KeyFunc] = None,
        exclude_paths: Optional[Iterable[str]] = None,
        skip_failed_requests: bool = False,
        skip_successful_requests: bool = False,
        enabled: bool = True,
        limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize rate limiting middleware.

        Args:
            app: FastAPI application
            policy: Policy name or explicit policy to enforce
            key_func: Maps a request to the identifier counted against
            exclude_paths: Paths (and their sub-paths) never rate limited
            skip_failed_requests: Give back quota for responses >= 400
            skip_successful_requests: Give back quota for responses < 400
            enabled: Whether rate limiting is enabled
            limiter: Explicit limiter; defaults to the one on app state
        """
        super().__init__(app)
        self.policy = policy
        self.key_func = key_func or default_key_func
        self.exclude_paths = set(
            DEFAULT_EXCLUDE_PATHS if exclude_paths is None else exclude_paths
        )
        self.skip_failed_requests = skip_failed_requests
        self.skip_successful_requests = skip_successful_requests
        self.enabled = enabled
        self.limiter = limiter

    def is_excluded(self, path: str) -> bool:
        return any(
            path == excluded or path.startswith(excluded.rstrip("/") + "/")
            for excluded in self.exclude_paths
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or self.is_excluded(request.url.path):
            return await call_next(request)

        limiter = self.limiter or _limiter_from(request)
        if limiter is None:
            logger.warning(
                "Rate limiter not initialised, request not limited",
                path=request.url.path,
            )
            return await call_next(request)

        with tracer.start_as_current_span("rate_limiting_middleware.dispatch") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.path", request.url.path)

            try:
                identifier = await _identify(self.key_func, request)
                result = await limiter.check(self.policy, identifier)
            except Exception as e:
                # Fail open on key function or policy errors
                logger.error(
                    "Rate limiting middleware error",
                    path=request.url.path,
                    error=str(e),
                    exc_info=True,
                )
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                return await call_next(request)

            span.set_attribute("rate_limit.allowed", result.allowed)
            span.set_attribute("rate_limit.remaining", result.remaining)

            if not result.allowed:
                span.set_attribute("http.status_code", status.HTTP_429_TOO_MANY_REQUESTS)
                logger.warning(
                    "Request rate limited",
                    path=request.url.path,
                    method=request.method,
                    key=result.key,
                    limit=result.limit,
                    retry_after=result.retry_after,
                )
                return rate_limit_response(result)

            response = await call_next(request)

            if self._should_refund(response.status_code) and not (
                result.fallback or result.whitelisted
            ):
                await limiter.decrement(result.key)

            response.headers.update(rate_limit_headers(result))
            return response

    def _should_refund(self, status_code: int) -> bool:
        if status_code >= 400:
            return self.skip_failed_requests
        return self.skip_successful_requests


def rate_limit_dependency(
    policy: Union[str, RateLimitPolicy], key_func: Optional[KeyFunc] = None
) -> Callable[[Request, Response], Awaitable[RateLimitResult]]:
    """
    Route-level rate limiting.

    Usage:
        @router.post("/tasks", dependencies=[Depends(rate_limit_dependency("create_task"))])
    """
    key_func = key_func or default_key_func

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        limiter = _limiter_from(request)
        if limiter is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiter not initialised",
            )

        result = await limiter.check(policy, await _identify(key_func, request))
        if not result.allowed:
            raise RateLimitExceededHTTPException(result)

        response.headers.update(rate_limit_headers(result))
        return result

    return dependency
