"""
Event store interface and the in-memory implementation.

The recycle flow depends only on the EventStore protocol. The in-memory store
backs development and tests; PostgresEventStore is the durable backend.
"""

import asyncio
import itertools
from datetime import UTC, datetime
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import DisposalEvent, RecycleEvent, UserAccount

logger = get_logger(__name__)


class EventStoreError(Exception):
    """Base exception for event store failures."""


class DuplicateEventError(EventStoreError):
    """Raised when an event's content hash is already stored."""

    def __init__(self, content_hash: str):
        super().__init__(f"Event with hash {content_hash[:12]}... already exists")
        self.content_hash = content_hash


class EventStore(Protocol):
    """Operations the recycle flow needs from durable storage."""

    async def find_user_by_identity(self, email: str) -> UserAccount | None: ...

    async def get_user(self, user_id: str) -> UserAccount | None: ...

    async def create_user(self, email: str, name: str | None = None) -> UserAccount: ...

    async def add_points(self, user_id: str, amount: int) -> int | None: ...

    async def deduct_points(self, user_id: str, amount: int) -> int | None: ...

    async def record_recycle_event(self, event: RecycleEvent) -> RecycleEvent: ...

    async def find_recycle_event_by_hash(self, video_hash: str) -> RecycleEvent | None: ...

    async def find_latest_verified_event(
        self,
        *,
        user_id: str | None = None,
        bin_barcode: str | None = None,
        product_barcode: str | None = None,
    ) -> RecycleEvent | None: ...

    async def list_recycle_events(self, user_id: str) -> list[RecycleEvent]: ...

    async def record_disposal_event(self, event: DisposalEvent) -> DisposalEvent: ...

    async def find_disposal_event_by_hash(self, image_hash: str) -> DisposalEvent | None: ...

    async def list_disposal_events(self, user_id: str) -> list[DisposalEvent]: ...


def default_name_for(email: str) -> str:
    return email.split("@")[0] or email


class InMemoryEventStore:
    """
    Process-local EventStore.

    Every mutation happens under one asyncio.Lock, so point updates are
    atomic and the video_hash uniqueness check-and-insert cannot race.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._users: dict[str, UserAccount] = {}
        self._users_by_email: dict[str, str] = {}
        self._recycle_events: list[RecycleEvent] = []
        self._recycle_by_hash: dict[str, RecycleEvent] = {}
        self._disposal_events: list[DisposalEvent] = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    async def find_user_by_identity(self, email: str) -> UserAccount | None:
        user_id = self._users_by_email.get(email)
        return self._users.get(user_id) if user_id else None

    async def get_user(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    async def create_user(self, email: str, name: str | None = None) -> UserAccount:
        async with self._lock:
            existing = self._users_by_email.get(email)
            if existing:
                return self._users[existing]

            user = UserAccount(
                id=self._next_id("u"),
                name=name or default_name_for(email),
                email=email,
                points=0,
                created_at=datetime.now(UTC),
            )
            self._users[user.id] = user
            self._users_by_email[email] = user.id

        logger.info("User created", user_id=user.id)
        return user

    async def add_points(self, user_id: str, amount: int) -> int | None:
        async with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            user.points += amount
            return user.points

    async def deduct_points(self, user_id: str, amount: int) -> int | None:
        """Subtract points if the balance covers it; None when it does not."""
        async with self._lock:
            user = self._users.get(user_id)
            if not user or user.points < amount:
                return None
            user.points -= amount
            return user.points

    async def record_recycle_event(self, event: RecycleEvent) -> RecycleEvent:
        async with self._lock:
            if event.video_hash in self._recycle_by_hash:
                raise DuplicateEventError(event.video_hash)
            stored = event.model_copy(update={"id": self._next_id("re")})
            self._recycle_events.append(stored)
            self._recycle_by_hash[stored.video_hash] = stored
        return stored

    async def find_recycle_event_by_hash(self, video_hash: str) -> RecycleEvent | None:
        return self._recycle_by_hash.get(video_hash)

    async def find_latest_verified_event(
        self,
        *,
        user_id: str | None = None,
        bin_barcode: str | None = None,
        product_barcode: str | None = None,
    ) -> RecycleEvent | None:
        matches = [
            event
            for event in self._recycle_events
            if event.verified
            and (user_id is None or event.user_id == user_id)
            and (bin_barcode is None or event.bin_barcode == bin_barcode)
            and (product_barcode is None or event.product_barcode == product_barcode)
        ]
        return max(matches, key=lambda e: e.timestamp, default=None)

    async def list_recycle_events(self, user_id: str) -> list[RecycleEvent]:
        events = [e for e in self._recycle_events if e.user_id == user_id]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    async def record_disposal_event(self, event: DisposalEvent) -> DisposalEvent:
        async with self._lock:
            if any(e.image_hash == event.image_hash for e in self._disposal_events):
                raise DuplicateEventError(event.image_hash)
            stored = event.model_copy(update={"id": self._next_id("de")})
            self._disposal_events.append(stored)
        return stored

    async def find_disposal_event_by_hash(self, image_hash: str) -> DisposalEvent | None:
        return next((e for e in self._disposal_events if e.image_hash == image_hash), None)

    async def list_disposal_events(self, user_id: str) -> list[DisposalEvent]:
        events = [e for e in self._disposal_events if e.user_id == user_id]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)
