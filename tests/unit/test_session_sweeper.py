import asyncio

import pytest

from app.jobs import session_sweeper


@pytest.mark.asyncio
async def test_sweep_removes_expired_sessions_and_buckets(container, clock):
    await container.recycle.start_session("alice@example.com")
    await container.rate_limiter.check_rate_limit("1.2.3.4|alice@example.com")

    clock.advance_ms(60_001)
    await container.recycle.start_session("bob@example.com")
    metrics = await session_sweeper.run_session_sweep(container)

    assert metrics == {
        "sessions_removed": 1,
        "sessions_active": 1,
        "buckets_removed": 1,
        "cooldowns_removed": 0,
    }


@pytest.mark.asyncio
async def test_sweeper_keeps_running_after_errors(container, monkeypatch):
    calls = {"count": 0}

    async def flaky_sweep(_container):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("boom")
        return {}

    monkeypatch.setattr(session_sweeper, "run_session_sweep", flaky_sweep)

    task = asyncio.create_task(session_sweeper.start_session_sweeper(container, interval_seconds=0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls["count"] >= 2


@pytest.mark.asyncio
async def test_sweep_forgets_cooldowns_past_longest_window(container, clock):
    session = await container.recycle.start_session("alice@example.com")
    await container.recycle.submit_product(session.session_id, "015665624058")
    await container.recycle.submit_bin(session.session_id, "TC001")
    await container.recycle.submit_video(session.session_id, b"clip-1", ["data:image/jpeg;base64,AAAA"])

    clock.advance_ms(20_000)
    assert (await session_sweeper.run_session_sweep(container))["cooldowns_removed"] == 0

    clock.advance_ms(10_001)
    assert (await session_sweeper.run_session_sweep(container))["cooldowns_removed"] == 3
    assert len(container.cooldowns) == 0
