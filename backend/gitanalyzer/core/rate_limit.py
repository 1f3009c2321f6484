"""Per-user rolling-window rate limiter backed by a Redis sorted set."""

import math
import time
import uuid
from dataclasses import dataclass

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from gitanalyzer.core.config import get_settings
from gitanalyzer.core.exceptions import RateLimitExceededError

logger = structlog.get_logger(__name__)

MAX_WATCH_RETRIES = 5


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds when the oldest counted call leaves the window
    retry_after: int  # seconds; 0 when allowed


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` calls per ``window_seconds`` per key.

    Each call is a member scored by its timestamp in ``ratelimit:{scope}:{key}``.
    Rejected calls are not counted.
    """

    def __init__(self, redis: Redis, scope: str, limit: int, window_seconds: int):
        self.redis = redis
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds

    def _key(self, key: str) -> str:
        return f"ratelimit:{self.scope}:{key}"

    async def hit(self, key: str, now: float | None = None) -> RateLimitStatus:
        """Count one call for ``key`` if the window has room.

        The window is read under WATCH and the call recorded in MULTI/EXEC,
        so concurrent callers cannot both take the last slot; a caller that
        loses the race re-reads the window.

        Args:
            key: Usually the user id
            now: Epoch seconds (for deterministic testing)

        Raises:
            WatchError: the window kept changing for ``MAX_WATCH_RETRIES`` attempts
        """
        now = time.time() if now is None else now
        redis_key = self._key(key)
        window_start = now - self.window_seconds

        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(1, MAX_WATCH_RETRIES + 1):
                try:
                    await pipe.watch(redis_key)
                    count, oldest = await self._read_window(pipe, redis_key, window_start)
                    if count >= self.limit:
                        await pipe.reset()
                        return self._rejected(now, oldest)

                    pipe.multi()
                    pipe.zremrangebyscore(redis_key, 0, window_start)
                    pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex}": now})
                    pipe.expire(redis_key, self.window_seconds)
                    await pipe.execute()
                except WatchError:
                    if attempt == MAX_WATCH_RETRIES:
                        raise
                    logger.debug("rate_limit_window_contended", scope=self.scope, attempt=attempt)
                    continue

                oldest_score = oldest[0][1] if oldest else now
                return RateLimitStatus(
                    allowed=True,
                    limit=self.limit,
                    remaining=self.limit - count - 1,
                    reset_at=math.ceil(oldest_score + self.window_seconds),
                    retry_after=0,
                )

    async def _read_window(self, pipe, redis_key: str, window_start: float) -> tuple[int, list]:
        """Calls still inside the window and the oldest of them, read without writing."""
        live = f"({window_start}"
        count = await pipe.zcount(redis_key, live, "+inf")
        oldest = await pipe.zrangebyscore(redis_key, live, "+inf", start=0, num=1, withscores=True)
        return count, oldest

    def _rejected(self, now: float, oldest: list) -> RateLimitStatus:
        oldest_score = oldest[0][1] if oldest else now
        reset_at = oldest_score + self.window_seconds
        return RateLimitStatus(
            allowed=False,
            limit=self.limit,
            remaining=0,
            reset_at=math.ceil(reset_at),
            retry_after=max(1, math.ceil(reset_at - now)),
        )

    async def enforce(self, key: str, now: float | None = None) -> RateLimitStatus:
        """Like ``hit`` but raises when the window is full.

        Redis outages allow the call through.

        Raises:
            RateLimitExceededError: window full; carries Retry-After data
        """
        try:
            status = await self.hit(key, now)
        except RedisError as exc:
            logger.warning("rate_limit_check_failed", scope=self.scope, error=str(exc), error_type=type(exc).__name__)
            return RateLimitStatus(allowed=True, limit=self.limit, remaining=self.limit, reset_at=0, retry_after=0)

        if not status.allowed:
            logger.info("rate_limit_exceeded", scope=self.scope, key=key, retry_after=status.retry_after)
            raise RateLimitExceededError(
                limit=status.limit,
                remaining=status.remaining,
                reset_at=status.reset_at,
                retry_after=status.retry_after,
            )
        return status


def implementation_plan_limiter(
    redis: Redis, limit: int | None = None, window_minutes: int | None = None
) -> SlidingWindowRateLimiter:
    """Limiter for implementation plan generation (default 10 calls / 60 minutes per user)."""
    settings = get_settings()
    return SlidingWindowRateLimiter(
        redis,
        scope="implementation_plan",
        limit=limit if limit is not None else settings.plan_rate_limit,
        window_seconds=(window_minutes if window_minutes is not None else settings.plan_rate_window_minutes) * 60,
    )
