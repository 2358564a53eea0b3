"""
Cooldown Tracker - anti-farming windows keyed on verified events.

Keys:
- user:<user_id>                      (default 30s)
- bin:<bin_barcode>                   (default 15s)
- user_product:<user_id>:<barcode>    (default 24h, optional)

Only verified events start a cooldown. The durable event store is the source
of truth; the local cache only short-circuits a *block* decision, so an
*allow* is always confirmed against the store and the cache can never serve a
staler answer than the event log.

A video attempt reserves its keys before verification starts. A reserved key
blocks every other attempt until the holder releases it, so two attempts can
never both pass the same window while the model call is in flight.
"""

import asyncio
import math
from collections.abc import Iterable
from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger
from app.repositories.event_store import EventStore
from app.services.recycle_errors import CooldownActive
from app.utils.clock import Clock, datetime_to_ms, now_ms, system_clock

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class CooldownKey:
    """Scope name plus the event-store filter that locates its last verified event."""

    scope: str
    user_id: str | None = None
    bin_barcode: str | None = None
    product_barcode: str | None = None

    @classmethod
    def for_user(cls, user_id: str) -> "CooldownKey":
        return cls(scope="user", user_id=user_id)

    @classmethod
    def for_bin(cls, bin_barcode: str) -> "CooldownKey":
        return cls(scope="bin", bin_barcode=bin_barcode)

    @classmethod
    def for_user_product(cls, user_id: str, product_barcode: str) -> "CooldownKey":
        return cls(scope="product", user_id=user_id, product_barcode=product_barcode)

    @property
    def cache_key(self) -> str:
        if self.scope == "user":
            return f"user:{self.user_id}"
        if self.scope == "bin":
            return f"bin:{self.bin_barcode}"
        return f"user_product:{self.user_id}:{self.product_barcode}"


@dataclass(slots=True, frozen=True)
class CooldownDecision:
    allowed: bool
    retry_after: int = 0
    last_verified_at_ms: int | None = None


@dataclass(slots=True, frozen=True)
class CooldownReservation:
    """Keys held by one in-flight attempt; hand back to release()."""

    cache_keys: tuple[str, ...]


class CooldownTracker:
    """Answers "has enough time elapsed since the last verified event for this key?"."""

    def __init__(self, event_store: EventStore, clock: Clock = system_clock):
        self._event_store = event_store
        self._clock = clock
        self._cache: dict[str, int] = {}
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    async def _last_verified_ms(self, key: CooldownKey) -> int | None:
        event = await self._event_store.find_latest_verified_event(
            user_id=key.user_id,
            bin_barcode=key.bin_barcode,
            product_barcode=key.product_barcode,
        )
        return datetime_to_ms(event.timestamp) if event else None

    def _decide(self, last_ms: int | None, window_ms: int, current_ms: int) -> CooldownDecision:
        if last_ms is None:
            return CooldownDecision(allowed=True)
        elapsed = current_ms - last_ms
        if elapsed < window_ms:
            retry_after = max(1, math.ceil((window_ms - elapsed) / 1000))
            return CooldownDecision(allowed=False, retry_after=retry_after, last_verified_at_ms=last_ms)
        return CooldownDecision(allowed=True, last_verified_at_ms=last_ms)

    async def _current_decision(self, key: CooldownKey, window_ms: int, current: int) -> CooldownDecision:
        """Cache first, then the store. Caller must hold the lock."""
        cached = self._cache.get(key.cache_key)
        if cached is not None:
            decision = self._decide(cached, window_ms, current)
            if not decision.allowed:
                return decision

        last_ms = await self._last_verified_ms(key)
        if last_ms is not None:
            self._cache[key.cache_key] = max(last_ms, self._cache.get(key.cache_key, last_ms))
        return self._decide(last_ms, window_ms, current)

    async def check_cooldown(self, key: CooldownKey, window_ms: int) -> CooldownDecision:
        """
        Check whether a new verified event for key is allowed now.

        Args:
            key: Which actor/bin/product the window applies to
            window_ms: Minimum elapsed milliseconds since the last verified event

        Returns:
            CooldownDecision with retry_after seconds when blocked
        """
        current = now_ms(self._clock)
        async with self._lock:
            decision = await self._current_decision(key, window_ms, current)

        if not decision.allowed:
            logger.info("Cooldown active", key=key.cache_key, retry_after=decision.retry_after)
        return decision

    async def reserve(self, checks: Iterable[tuple[CooldownKey, int]]) -> CooldownReservation:
        """
        Check every (key, window_ms) pair and hold all keys in one step.

        Raises:
            CooldownActive: a window is still open, or another attempt holds the key
        """
        checks = list(checks)
        current = now_ms(self._clock)

        async with self._lock:
            for key, window_ms in checks:
                if key.cache_key in self._pending:
                    logger.info("Cooldown key held by attempt in flight", key=key.cache_key)
                    raise CooldownActive(scope=key.scope, retry_after=1)

                decision = await self._current_decision(key, window_ms, current)
                if not decision.allowed:
                    logger.info("Cooldown active", key=key.cache_key, retry_after=decision.retry_after)
                    raise CooldownActive(scope=key.scope, retry_after=decision.retry_after)

            cache_keys = tuple(key.cache_key for key, _ in checks)
            self._pending.update(cache_keys)

        return CooldownReservation(cache_keys)

    async def release(self, reservation: CooldownReservation) -> None:
        """Drop the hold. Record the verified event first if the attempt passed."""
        async with self._lock:
            self._pending.difference_update(reservation.cache_keys)

    async def record_verified(self, keys: list[CooldownKey], at_ms: int | None = None) -> None:
        """Warm the cache after a verified event has been written to the store."""
        stamp = at_ms if at_ms is not None else now_ms(self._clock)
        async with self._lock:
            for key in keys:
                self._cache[key.cache_key] = max(stamp, self._cache.get(key.cache_key, stamp))

    async def prune_expired(self, max_window_ms: int) -> int:
        """Forget cached stamps older than the longest window in use."""
        cutoff = now_ms(self._clock) - max_window_ms
        async with self._lock:
            stale = [k for k, stamp in self._cache.items() if stamp <= cutoff]
            for k in stale:
                del self._cache[k]
        return len(stale)
