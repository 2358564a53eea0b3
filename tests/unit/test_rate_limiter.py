from unittest.mock import AsyncMock

import pytest

from app.middleware.rate_limiter import MemoryBucketBackend, RateLimiter, RedisBucketBackend


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryBucketBackend(clock), default_limit=3, window_ms=60_000)


@pytest.mark.asyncio
async def test_fourth_request_in_window_is_rejected(limiter, clock):
    for expected_remaining in (2, 1, 0):
        allowed, info = await limiter.check_rate_limit("1.2.3.4|alice@example.com")
        assert allowed is True
        assert info["remaining"] == expected_remaining

    clock.advance_ms(10_000)
    allowed, info = await limiter.check_rate_limit("1.2.3.4|alice@example.com")

    assert allowed is False
    assert info["retry_after"] == 50
    assert info["limit"] == 3


@pytest.mark.asyncio
async def test_window_reopens_after_reset(limiter, clock):
    for _ in range(4):
        await limiter.check_rate_limit("k")

    clock.advance_ms(60_001)
    allowed, info = await limiter.check_rate_limit("k")

    assert allowed is True
    assert info["remaining"] == 2


@pytest.mark.asyncio
async def test_keys_are_independent(limiter):
    for _ in range(3):
        await limiter.check_rate_limit("1.2.3.4|alice@example.com")

    allowed, _ = await limiter.check_rate_limit("1.2.3.4|bob@example.com")
    assert allowed is True


@pytest.mark.asyncio
async def test_retry_after_is_at_least_one_second(limiter, clock):
    for _ in range(3):
        await limiter.check_rate_limit("k")
    clock.advance_ms(59_999)

    allowed, info = await limiter.check_rate_limit("k")

    assert allowed is False
    assert info["retry_after"] == 1


@pytest.mark.asyncio
async def test_prune_drops_closed_windows(clock):
    backend = MemoryBucketBackend(clock)
    await backend.hit("a", 1_000)
    clock.advance_ms(1_001)
    await backend.hit("b", 1_000)

    assert await backend.prune_expired() == 1


@pytest.mark.asyncio
async def test_redis_backend_uses_namespaced_key():
    client = AsyncMock()
    client.eval.return_value = [2, 41_000]
    backend = RedisBucketBackend(client)

    count, ttl = await backend.hit("1.2.3.4|alice@example.com", 60_000)

    assert (count, ttl) == (2, 41_000)
    _, keys, args = client.eval.call_args.args
    assert keys == ["ratelimit:1.2.3.4|alice@example.com"]
    assert args == [60_000]


@pytest.mark.asyncio
async def test_backend_failure_fails_open_by_default():
    backend = AsyncMock()
    backend.hit.side_effect = ConnectionError("down")
    limiter = RateLimiter(backend, default_limit=3, window_ms=60_000)

    allowed, info = await limiter.check_rate_limit("k")

    assert allowed is True
    assert info["error"] == "rate_limiter_error"


@pytest.mark.asyncio
async def test_backend_failure_can_fail_closed():
    backend = AsyncMock()
    backend.hit.side_effect = ConnectionError("down")
    limiter = RateLimiter(backend, default_limit=3, window_ms=60_000, fail_open=False)

    allowed, info = await limiter.check_rate_limit("k")

    assert allowed is False
    assert info["retry_after"] == 60
