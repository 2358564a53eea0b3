from datetime import UTC, datetime

import pytest

from app.models.domain.recycle_domain import RecycleEvent
from app.repositories.event_store import InMemoryEventStore
from app.services.cooldown_tracker import CooldownKey, CooldownTracker
from app.services.recycle_errors import CooldownActive
from app.utils.clock import now_ms


def _event(clock, *, user_id="u_1", bin_barcode="TC001", verified=True, video_hash="h1"):
    return RecycleEvent(
        user_id=user_id,
        product_barcode="015665624058",
        bin_barcode=bin_barcode,
        video_url="/uploads/x.webm",
        video_hash=video_hash,
        verified=verified,
        timestamp=datetime.fromtimestamp(clock(), UTC),
    )


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def tracker(store, clock):
    return CooldownTracker(store, clock)


@pytest.mark.asyncio
async def test_no_prior_event_is_allowed(tracker):
    decision = await tracker.check_cooldown(CooldownKey.for_user("u_1"), 30_000)
    assert decision.allowed is True
    assert decision.retry_after == 0


@pytest.mark.asyncio
async def test_user_cooldown_boundaries(tracker, store, clock):
    await store.record_recycle_event(_event(clock))

    clock.advance_ms(29_999)
    blocked = await tracker.check_cooldown(CooldownKey.for_user("u_1"), 30_000)
    assert blocked.allowed is False
    assert blocked.retry_after == 1

    clock.advance_ms(2)
    allowed = await tracker.check_cooldown(CooldownKey.for_user("u_1"), 30_000)
    assert allowed.allowed is True


@pytest.mark.asyncio
async def test_retry_after_rounds_up(tracker, store, clock):
    await store.record_recycle_event(_event(clock))
    clock.advance_ms(4_500)

    decision = await tracker.check_cooldown(CooldownKey.for_bin("TC001"), 15_000)

    assert decision.allowed is False
    assert decision.retry_after == 11


@pytest.mark.asyncio
async def test_unverified_events_do_not_start_cooldown(tracker, store, clock):
    await store.record_recycle_event(_event(clock, verified=False))

    decision = await tracker.check_cooldown(CooldownKey.for_user("u_1"), 30_000)

    assert decision.allowed is True


@pytest.mark.asyncio
async def test_bin_cooldown_applies_across_users(tracker, store, clock):
    await store.record_recycle_event(_event(clock, user_id="u_1"))
    clock.advance_ms(1_000)

    assert (await tracker.check_cooldown(CooldownKey.for_user("u_2"), 30_000)).allowed is True
    assert (await tracker.check_cooldown(CooldownKey.for_bin("TC001"), 15_000)).allowed is False
    assert (await tracker.check_cooldown(CooldownKey.for_bin("TC002"), 15_000)).allowed is True


@pytest.mark.asyncio
async def test_recorded_verification_blocks_without_store_event(tracker, clock):
    await tracker.record_verified([CooldownKey.for_user("u_9")], at_ms=now_ms(clock))
    clock.advance_ms(10_000)

    decision = await tracker.check_cooldown(CooldownKey.for_user("u_9"), 30_000)

    assert decision.allowed is False
    assert decision.retry_after == 20


def test_cache_keys_are_scoped():
    assert CooldownKey.for_user("1").cache_key != CooldownKey.for_bin("1").cache_key
    assert CooldownKey.for_user_product("u", "p").scope == "product"


@pytest.mark.asyncio
async def test_reserved_key_blocks_other_attempts_until_released(tracker):
    reservation = await tracker.reserve([(CooldownKey.for_user("u_1"), 30_000)])

    with pytest.raises(CooldownActive) as exc:
        await tracker.reserve([(CooldownKey.for_user("u_1"), 30_000)])
    assert exc.value.scope == "user"

    await tracker.release(reservation)
    await tracker.reserve([(CooldownKey.for_user("u_1"), 30_000)])


@pytest.mark.asyncio
async def test_blocked_reservation_holds_nothing(tracker, store, clock):
    await store.record_recycle_event(_event(clock, bin_barcode="TC001"))
    clock.advance_ms(31_000)

    with pytest.raises(CooldownActive) as exc:
        await tracker.reserve(
            [(CooldownKey.for_user("u_2"), 30_000), (CooldownKey.for_bin("TC001"), 60_000)]
        )
    assert exc.value.scope == "bin"

    await tracker.reserve([(CooldownKey.for_user("u_2"), 30_000)])


@pytest.mark.asyncio
async def test_prune_drops_stamps_past_longest_window(tracker, clock):
    await tracker.record_verified([CooldownKey.for_user("old")], at_ms=now_ms(clock))
    clock.advance_ms(20_000)
    await tracker.record_verified([CooldownKey.for_user("new")], at_ms=now_ms(clock))
    clock.advance_ms(15_000)

    assert await tracker.prune_expired(30_000) == 1
    assert len(tracker) == 1
    assert (await tracker.check_cooldown(CooldownKey.for_user("new"), 30_000)).allowed is False
