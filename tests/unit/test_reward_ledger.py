import pytest

from app.repositories.event_store import InMemoryEventStore
from app.services.recycle_errors import InsufficientPoints
from app.services.reward_ledger import RewardLedger, points_for_item_type


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.mark.parametrize(
    "item_type,points",
    [("bottle", 50), ("can", 20), ("food", 25), ("other", 15), ("Bottle ", 50), ("tire", 15), (None, 15)],
)
def test_points_for_item_type(item_type, points):
    assert points_for_item_type(item_type) == points


@pytest.mark.asyncio
async def test_award_points_increments_balance(store):
    user = await store.create_user("alice@example.com")
    ledger = RewardLedger(store, points_per_dollar=100)

    assert await ledger.award_points(user.id, 50) == 50
    assert await ledger.award_points(user.id, 50) == 100
    assert await ledger.award_points(user.id, 0) is None


@pytest.mark.asyncio
async def test_award_points_for_unknown_user(store):
    assert await RewardLedger(store).award_points("u_missing", 50) is None


@pytest.mark.asyncio
async def test_redeem_deducts_whole_dollars(store):
    user = await store.create_user("alice@example.com")
    await store.add_points(user.id, 250)
    ledger = RewardLedger(store, points_per_dollar=100)

    assert await ledger.redeem_dollars(user.id, 2) == 50


@pytest.mark.asyncio
async def test_redeem_rejects_insufficient_balance(store):
    user = await store.create_user("alice@example.com")
    await store.add_points(user.id, 99)
    ledger = RewardLedger(store, points_per_dollar=100)

    with pytest.raises(InsufficientPoints) as exc:
        await ledger.redeem_dollars(user.id, 1)

    assert exc.value.status_code == 400
    assert exc.value.details == {"required": 100, "available": 99}
    assert (await store.get_user(user.id)).points == 99
