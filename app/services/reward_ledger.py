"""Reward Ledger - point awards and redemptions against the event store."""

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.repositories.event_store import EventStore
from app.services.recycle_errors import InsufficientPoints

logger = get_logger(__name__)

# Points per verified simple upload, by claimed item type
POINTS_MAP: dict[str, int] = {
    "bottle": 50,  # water bottle
    "can": 20,
    "food": 25,  # food waste
    "other": 15,
}


def points_for_item_type(item_type: str | None) -> int:
    return POINTS_MAP.get((item_type or "").strip().lower(), POINTS_MAP["other"])


class RewardLedger:
    def __init__(self, event_store: EventStore, points_per_dollar: int | None = None):
        self._event_store = event_store
        self.points_per_dollar = points_per_dollar or settings.POINTS_PER_DOLLAR

    async def award_points(self, user_id: str, amount: int) -> int | None:
        """Atomically add amount to the user's balance; returns the new balance."""
        if amount <= 0:
            return None

        new_balance = await self._event_store.add_points(user_id, amount)
        if new_balance is None:
            logger.warning("Points not awarded - user missing", user_id=user_id, amount=amount)
        else:
            logger.info("Points awarded", user_id=user_id, amount=amount, new_points=new_balance)
        return new_balance

    async def redeem_dollars(self, user_id: str, dollars: float) -> int:
        """
        Convert whole dollars to points and deduct them.

        Raises:
            InsufficientPoints: balance does not cover the redemption
        """
        required = int(dollars) * self.points_per_dollar
        new_balance = await self._event_store.deduct_points(user_id, required)
        if new_balance is None:
            user = await self._event_store.get_user(user_id)
            raise InsufficientPoints(required=required, available=user.points if user else 0)

        logger.info("Points redeemed", user_id=user_id, points=required, new_points=new_balance)
        return new_balance
