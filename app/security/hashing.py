"""
Content fingerprints for duplicate-submission detection.

A fingerprint is the hex SHA-256 of the raw uploaded bytes. The registry keeps
a bounded process-local record of digests already bound to a stored event;
the event store stays the authoritative answer.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "fingerprint",
    "HashRegistry",
]

DurableLookup = Callable[[str], Awaitable[bool]]

DEFAULT_MAX_ENTRIES = 10_000


def fingerprint(content: bytes) -> str:
    """Compute the hex SHA-256 digest of raw content."""
    return hashlib.sha256(content).hexdigest()


class HashRegistry:
    """
    Duplicate check over a fast in-memory record backed by a durable lookup.

    Args:
        durable_lookup: Coroutine answering "does a stored event carry this digest?"
        max_entries: Oldest remembered digests are dropped past this size
    """

    def __init__(self, durable_lookup: DurableLookup | None = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()
        self._durable_lookup = durable_lookup
        self._max_entries = max_entries

    def _remember_locked(self, digest: str) -> None:
        self._seen[digest] = None
        self._seen.move_to_end(digest)
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)

    async def _known_locked(self, digest: str) -> bool:
        if digest in self._seen:
            logger.info("Duplicate content (memory)", digest_preview=digest[:12])
            return True

        if self._durable_lookup is None:
            return False

        found = await self._durable_lookup(digest)
        if found:
            logger.info("Duplicate content (store)", digest_preview=digest[:12])
            self._remember_locked(digest)
        return found

    async def reserve(self, digest: str) -> bool:
        """
        Claim a digest for one in-flight submission.

        Returns False when the digest is already stored or held by another
        submission; the caller must treat that as a duplicate.
        """
        async with self._lock:
            if digest in self._pending:
                logger.info("Duplicate content (in flight)", digest_preview=digest[:12])
                return False
            if await self._known_locked(digest):
                return False
            self._pending.add(digest)
            return True

    async def release(self, digest: str) -> None:
        """Drop an in-flight hold; a no-op once the digest was remembered."""
        async with self._lock:
            self._pending.discard(digest)

    async def remember(self, digest: str) -> None:
        """Record a digest once its event is durably stored."""
        async with self._lock:
            self._pending.discard(digest)
            self._remember_locked(digest)

    def __len__(self) -> int:
        return len(self._seen)
