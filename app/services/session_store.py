"""
Recycle session store.

Sessions live in process memory and are addressable only by their random id.
Every read checks the TTL lazily (an expired session is evicted and reported
as expired); sweep_expired() evicts abandoned sessions in bulk.

All check-then-mutate operations run under a single asyncio.Lock with no
awaits inside the critical section, so a step advance or a claim is one
indivisible operation.
"""

import asyncio
import secrets
from dataclasses import replace
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import RecycleSession, SessionStep
from app.services.recycle_errors import InvalidStep, SessionExpired, SessionNotFound
from app.utils.clock import Clock, now_ms, system_clock

logger = get_logger(__name__)

SESSION_ID_BYTES = 16


def new_session_id() -> str:
    """Cryptographically random, 32 hex chars."""
    return secrets.token_hex(SESSION_ID_BYTES)


class SessionStore(Protocol):
    ttl_ms: int

    async def create(self, owner_identity: str, user_id: str) -> RecycleSession: ...

    async def get(self, session_id: str) -> RecycleSession: ...

    async def owner_of(self, session_id: str) -> str | None: ...

    async def advance(
        self, session_id: str, expected: SessionStep, barcode: str
    ) -> RecycleSession: ...

    async def claim(self, session_id: str, expected: SessionStep) -> RecycleSession: ...

    async def restore(self, session: RecycleSession, step: SessionStep) -> None: ...

    async def sweep_expired(self) -> int: ...


class InMemorySessionStore:
    """Process-local SessionStore; sessions do not survive a restart."""

    def __init__(self, ttl_ms: int, clock: Clock = system_clock):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._sessions: dict[str, RecycleSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _live_session(self, session_id: str) -> RecycleSession:
        """Lookup with lazy expiry. Caller must hold the lock."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        if session.is_expired(now_ms(self._clock), self.ttl_ms):
            del self._sessions[session_id]
            logger.info("Session expired on access", session_id=session_id)
            raise SessionExpired(session_id)

        return session

    async def create(self, owner_identity: str, user_id: str) -> RecycleSession:
        session = RecycleSession(
            session_id=new_session_id(),
            owner_identity=owner_identity,
            user_id=user_id,
            created_at_ms=now_ms(self._clock),
        )
        async with self._lock:
            self._sessions[session.session_id] = session

        logger.info("Recycle session started", session_id=session.session_id, user_id=user_id)
        return replace(session)

    async def get(self, session_id: str) -> RecycleSession:
        async with self._lock:
            return replace(self._live_session(session_id))

    async def owner_of(self, session_id: str) -> str | None:
        """Owner identity of a stored session, expired or not. Never evicts."""
        async with self._lock:
            session = self._sessions.get(session_id)
            return session.owner_identity if session else None

    async def advance(self, session_id: str, expected: SessionStep, barcode: str) -> RecycleSession:
        """
        Record the barcode for the expected step and move to the next one.

        Raises:
            SessionNotFound, SessionExpired, InvalidStep
        """
        if expected not in (SessionStep.PRODUCT, SessionStep.BIN):
            raise ValueError(f"Step {expected.value} does not take a barcode")

        async with self._lock:
            session = self._live_session(session_id)
            if session.step is not expected:
                raise InvalidStep(expected.value, session.step.value)

            if expected is SessionStep.PRODUCT:
                session.product_barcode = barcode
            else:
                session.bin_barcode = barcode
            session.step = expected.next()

            logger.info(
                "Session advanced",
                session_id=session_id,
                from_step=expected.value,
                to_step=session.step.value,
            )
            return replace(session)

    async def claim(self, session_id: str, expected: SessionStep) -> RecycleSession:
        """
        Remove and return the session for its final step.

        Only one caller can claim a session; any other concurrent caller sees
        SessionNotFound afterwards.
        """
        async with self._lock:
            session = self._live_session(session_id)
            if session.step is not expected:
                raise InvalidStep(expected.value, session.step.value)

            del self._sessions[session_id]

        logger.info("Session claimed", session_id=session_id, step=expected.value)
        return replace(session, step=SessionStep.DONE)

    async def restore(self, session: RecycleSession, step: SessionStep) -> None:
        """Put a claimed session back at step, unchanged otherwise."""
        async with self._lock:
            self._sessions[session.session_id] = replace(session, step=step)

        logger.info("Session restored", session_id=session.session_id, step=step.value)

    async def sweep_expired(self) -> int:
        current = now_ms(self._clock)
        async with self._lock:
            expired = [
                sid for sid, s in self._sessions.items() if s.is_expired(current, self.ttl_ms)
            ]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            logger.info("Expired sessions swept", count=len(expired), remaining=len(self._sessions))
        return len(expired)
