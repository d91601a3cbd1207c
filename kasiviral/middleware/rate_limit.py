"""
Rate limiting for thread generation using a Redis sliding window.

Thread generation calls a paid completion API, so each principal gets a
fixed number of generations per window.

Features:
- Per-principal, per-endpoint limits
- Returns 429 with Retry-After when exceeded
- Emits a rate_limit.triggered structured log line
- Graceful degradation if Redis is unavailable (allow request, log warning)

Configuration (Settings):
- RATE_LIMIT_THREADS_PER_WINDOW: Max generations per window (default: 20)
- RATE_LIMIT_WINDOW_SECONDS:     Window duration in seconds (default: 3600)
- RATE_LIMIT_ENABLED:            Kill switch (default: true)
- REDIS_URL:                     Redis connection URL

Usage:
    @router.post("/threads/generate")
    async def generate(_rate_limit=Depends(rate_limit_dependency("thread_generate"))):
        ...

The principal is taken from the verified credential (the dependency chains on
require_active_subscription), so unauthenticated or unentitled calls never
consume quota.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from fastapi import Depends, Request
from starlette.concurrency import run_in_threadpool

from kasiviral.api.dependencies.auth import get_app_settings, require_active_subscription
from kasiviral.config.settings import Settings
from kasiviral.platform.errors import RateLimitError
from kasiviral.platform.identity import VerifiedPrincipal

logger = logging.getLogger(__name__)

# Trim, count and record run as one atomic server-side step.
# KEYS[1] = key; ARGV = now, window_start, limit, member, ttl
# Returns {allowed (0|1), count before this request, oldest score}
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
redis.call("ZREMRANGEBYSCORE", key, "-inf", ARGV[2])
local count = redis.call("ZCARD", key)
if count >= tonumber(ARGV[3]) then
    local oldest = redis.call("ZRANGE", key, 0, 0, "WITHSCORES")
    return {0, count, oldest[2] or ARGV[1]}
end
redis.call("ZADD", key, ARGV[1], ARGV[4])
redis.call("EXPIRE", key, ARGV[5])
return {1, count, ARGV[1]}
"""


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed:     Whether the request is allowed.
        remaining:   Number of requests remaining in the current window.
        limit:       Maximum number of requests allowed per window.
        reset_at:    Unix timestamp when the current window resets.
        retry_after: Seconds until the client should retry (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: int


class RateLimiter:
    """
    Redis-backed sliding window rate limiter.

    Each request is a sorted-set member scored by its timestamp. On every check
    the set is trimmed to the last ``window_seconds`` and its size compared to
    the limit.
    """

    def __init__(
        self,
        redis_url: str,
        default_limit: int = 20,
        window_seconds: int = 3600,
        redis_client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis_url = redis_url
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self._redis = redis_client
        self._clock = clock
        self._script = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            redis_url=settings.redis_url,
            default_limit=settings.rate_limit_threads_per_window,
            window_seconds=settings.rate_limit_window_seconds,
        )

    def _get_redis(self) -> redis.Redis:
        """Connect lazily so the app starts even when Redis is not up yet."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def check_rate_limit(
        self,
        subject_id: str,
        endpoint: str,
        limit: Optional[int] = None,
        window: Optional[int] = None,
    ) -> RateLimitResult:
        """
        Check whether a request is allowed under the sliding window.

        Algorithm (one Lua script, atomic on the Redis server):
        1. Key ``ratelimit:{endpoint}:{subject_id}``
        2. Remove members scored before (now - window)
        3. Count the rest
        4. count >= limit: denied until the oldest member leaves the window
        5. Otherwise record this request, refresh the TTL and allow
        """
        effective_limit = limit if limit is not None else self.default_limit
        effective_window = window if window is not None else self.window_seconds

        now = self._clock()
        window_start = now - effective_window
        reset_at = now + effective_window

        key = f"ratelimit:{endpoint}:{subject_id}"

        try:
            r = self._get_redis()
            if self._script is None:
                self._script = r.register_script(SLIDING_WINDOW_SCRIPT)

            member = f"{now}:{uuid.uuid4().hex}"
            allowed, current_count, oldest = self._script(
                keys=[key],
                args=[now, window_start, effective_limit, member, effective_window + 10],
            )
            current_count = int(current_count)

            if not int(allowed):
                oldest_score = float(oldest) if oldest is not None else now
                retry_after = max(1, int(oldest_score + effective_window - now))
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=effective_limit,
                    reset_at=oldest_score + effective_window,
                    retry_after=retry_after,
                )

            return RateLimitResult(
                allowed=True,
                remaining=max(0, effective_limit - current_count - 1),
                limit=effective_limit,
                reset_at=reset_at,
                retry_after=0,
            )

        except redis.RedisError as exc:
            logger.warning(
                "Redis unavailable for rate limiting - allowing request (fail-open)",
                extra={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "endpoint": endpoint,
                    "subject_id": subject_id,
                },
            )
            return RateLimitResult(
                allowed=True,
                remaining=effective_limit,
                limit=effective_limit,
                reset_at=reset_at,
                retry_after=0,
            )


def get_rate_limiter(request: Request) -> RateLimiter:
    """The app's limiter, created from settings on first use."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter.from_settings(get_app_settings(request))
        request.app.state.rate_limiter = limiter
    return limiter


def rate_limit_dependency(
    endpoint_name: str,
    limit: Optional[int] = None,
    window: Optional[int] = None,
) -> Callable:
    """
    Create a FastAPI dependency that enforces rate limiting for endpoint_name.

    limit/window override the values from Settings when given.
    """

    async def _dependency(
        request: Request,
        principal: VerifiedPrincipal = Depends(require_active_subscription),
    ) -> RateLimitResult:
        settings = get_app_settings(request)
        if not settings.rate_limit_enabled:
            return RateLimitResult(
                allowed=True,
                remaining=settings.rate_limit_threads_per_window,
                limit=settings.rate_limit_threads_per_window,
                reset_at=time.time() + settings.rate_limit_window_seconds,
                retry_after=0,
            )

        limiter = get_rate_limiter(request)
        result = await run_check(limiter, principal.subject_id, endpoint_name, limit, window)

        if not result.allowed:
            logger.warning(
                "Rate limit triggered",
                extra={
                    "action": "rate_limit.triggered",
                    "subject_id": principal.subject_id,
                    "endpoint": endpoint_name,
                    "limit": result.limit,
                    "retry_after": result.retry_after,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            raise RateLimitError(
                "Too many requests. Please wait before retrying.",
                retry_after=result.retry_after,
            )

        return result

    return _dependency


async def run_check(
    limiter: RateLimiter,
    subject_id: str,
    endpoint: str,
    limit: Optional[int],
    window: Optional[int],
) -> RateLimitResult:
    # redis-py is blocking; keep it off the event loop
    return await run_in_threadpool(
        limiter.check_rate_limit, subject_id, endpoint, limit, window
    )
