"""
Rate Limiter - fixed-window request throttle.

Each identity key ("<client ip>|<claimed identity>") owns a bucket of
{count, reset_at}. The first request opens a window of RATE_LIMIT_WINDOW_MS;
every request in the window increments the count (rejected ones included) and
once count exceeds the limit the caller gets retry_after =
ceil((reset_at - now) / 1000) seconds.

Backends:
- memory: dict of buckets guarded by an asyncio.Lock (single process)
- redis: atomic Lua script (INCR + PEXPIRE) shared across processes

Usage:
    allowed, info = await rate_limiter.check_rate_limit("10.0.0.1|alice@example.com")
    if not allowed:
        raise RateLimited(info["retry_after"])
"""

import asyncio
import math
from dataclasses import dataclass
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient
from app.utils.clock import Clock, now_ms, system_clock

logger = get_logger(__name__)


@dataclass(slots=True)
class RateLimitBucket:
    count: int
    reset_at_ms: int


class BucketBackend(Protocol):
    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        """Count one request; return (count_in_window, ms_until_reset)."""
        ...


class MemoryBucketBackend:
    """In-process buckets; the check-and-increment is one locked step."""

    def __init__(self, clock: Clock = system_clock):
        self._clock = clock
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        current = now_ms(self._clock)
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or current > bucket.reset_at_ms:
                bucket = RateLimitBucket(count=1, reset_at_ms=current + window_ms)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
            return bucket.count, bucket.reset_at_ms - current

    async def prune_expired(self) -> int:
        """Drop buckets whose window has closed."""
        current = now_ms(self._clock)
        async with self._lock:
            stale = [k for k, b in self._buckets.items() if current > b.reset_at_ms]
            for key in stale:
                del self._buckets[key]
        return len(stale)


class RedisBucketBackend:
    """Buckets as Redis counters with a millisecond TTL equal to the window."""

    FIXED_WINDOW_LUA_SCRIPT = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])

    local count = redis.call('INCR', key)
    if count == 1 then
        redis.call('PEXPIRE', key, window_ms)
    end

    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        -- Key lost its expiry (e.g. created by an older client); reopen the window
        redis.call('PEXPIRE', key, window_ms)
        ttl = window_ms
    end

    return {count, ttl}
    """

    def __init__(self, client: FastRedisClient, namespace: str = "ratelimit"):
        self._client = client
        self._namespace = namespace

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        result = await self._client.eval(
            self.FIXED_WINDOW_LUA_SCRIPT,
            [f"{self._namespace}:{key}"],
            [window_ms],
        )
        return int(result[0]), int(result[1])


class RateLimiter:
    """
    Fixed-window rate limiter over a pluggable bucket backend.

    Thread Safety:
        Both backends perform the increment-and-read atomically, so two
        concurrent requests can never both observe the same count.
    """

    def __init__(
        self,
        backend: BucketBackend,
        default_limit: int = 60,
        window_ms: int = 60_000,
        fail_open: bool = True,
    ):
        """
        Args:
            backend: Bucket storage (memory or redis)
            default_limit: Requests allowed per window
            window_ms: Window length in milliseconds
            fail_open: If True, allow requests when the backend fails
        """
        self.backend = backend
        self.default_limit = default_limit
        self.window_ms = window_ms
        self.fail_open = fail_open

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Count a request for key and decide whether it is allowed.

        Returns:
            Tuple of (allowed, info) where info carries limit, remaining,
            retry_after (seconds, set when rejected) and window_seconds.
        """
        limit = limit or self.default_limit
        window_ms = window_ms or self.window_ms

        try:
            count, ms_until_reset = await self.backend.hit(key, window_ms)
        except Exception as e:
            logger.error(
                "Rate limiter backend error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
            )
            if self.fail_open:
                return True, self._create_info_dict(
                    allowed=True, limit=limit, remaining=limit, error="rate_limiter_error"
                )
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=math.ceil(window_ms / 1000),
                error="rate_limiter_error",
            )

        if count > limit:
            retry_after = max(1, math.ceil(ms_until_reset / 1000))
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=retry_after,
                window_seconds=window_ms / 1000,
            )

        return True, self._create_info_dict(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            window_seconds=window_ms / 1000,
        )

    def _create_info_dict(
        self,
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        window_seconds: float | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }

        if window_seconds is not None:
            info["window_seconds"] = window_seconds

        if error:
            info["error"] = error

        return info
