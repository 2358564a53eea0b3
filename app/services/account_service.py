"""Account lookups shared by the recycle flow and the account endpoints."""

from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import DisposalEvent, RecycleEvent, UserAccount
from app.repositories.event_store import EventStore
from app.services.recycle_errors import UserNotFound
from app.services.reward_ledger import RewardLedger

logger = get_logger(__name__)


def normalize_identity(email: str | None) -> str:
    return (email or "").strip().lower()


class AccountService:
    def __init__(self, event_store: EventStore, ledger: RewardLedger):
        self._event_store = event_store
        self._ledger = ledger

    async def ensure_user(self, email: str) -> UserAccount:
        """Find the account for email, creating it with zero points if missing."""
        identity = normalize_identity(email)
        user = await self._event_store.find_user_by_identity(identity)
        if user is None:
            user = await self._event_store.create_user(identity)
        return user

    async def get_user(self, email: str) -> UserAccount:
        user = await self._event_store.find_user_by_identity(normalize_identity(email))
        if user is None:
            raise UserNotFound(email)
        return user

    async def get_history(self, email: str) -> tuple[list[RecycleEvent], list[DisposalEvent]]:
        user = await self.get_user(email)
        recycle_events = await self._event_store.list_recycle_events(user.id)
        disposal_events = await self._event_store.list_disposal_events(user.id)
        return recycle_events, disposal_events

    async def redeem(self, email: str, dollars: float) -> int:
        user = await self.get_user(email)
        return await self._ledger.redeem_dollars(user.id, dollars)
