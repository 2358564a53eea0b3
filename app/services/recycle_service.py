"""
Recycle Service - the product -> bin -> video session flow.

Flow:
    1. start_session(email)            -> step "product"
    2. submit_product(id, barcode)     -> step "bin"
    3. submit_bin(id, barcode)         -> step "video"
    4. submit_video(id, video, frames) -> verdict; session consumed

On the video step the session is claimed first, so a concurrent second
submission on the same id sees SessionNotFound. The user and bin cooldown
keys and the video digest are then reserved for the whole attempt. A gate
rejection puts the session back unchanged so the client can retry within the
TTL; reservations are released when the attempt ends, after a verified
result has been recorded.
"""

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import (
    RecycleEvent,
    RecycleSession,
    SessionStep,
    VideoSubmissionOutcome,
)
from app.repositories.event_store import DuplicateEventError, EventStore
from app.security.hashing import HashRegistry, fingerprint
from app.services.account_service import AccountService
from app.services.cooldown_tracker import CooldownKey, CooldownTracker
from app.services.media_storage import MediaStorage
from app.services.recycle_errors import CooldownActive, DuplicateContent, InvalidStep
from app.services.reward_ledger import RewardLedger
from app.services.session_store import SessionStore
from app.services.verification_service import VerificationService
from app.utils.clock import Clock, datetime_to_ms, system_clock, utc_from_clock

logger = get_logger(__name__)


class RecycleService:
    def __init__(
        self,
        *,
        sessions: SessionStore,
        event_store: EventStore,
        accounts: AccountService,
        cooldowns: CooldownTracker,
        video_hashes: HashRegistry,
        verifier: VerificationService,
        ledger: RewardLedger,
        media: MediaStorage,
        clock: Clock = system_clock,
        recycle_points: int | None = None,
        user_cooldown_ms: int | None = None,
        bin_cooldown_ms: int | None = None,
        user_product_cooldown_ms: int | None = None,
        user_product_cooldown_enabled: bool | None = None,
    ):
        self.sessions = sessions
        self._event_store = event_store
        self._accounts = accounts
        self._cooldowns = cooldowns
        self._video_hashes = video_hashes
        self._verifier = verifier
        self._ledger = ledger
        self._media = media
        self._clock = clock

        def _pick(value, default):
            return default if value is None else value

        self.recycle_points = _pick(recycle_points, settings.RECYCLE_POINTS)
        self.user_cooldown_ms = _pick(user_cooldown_ms, settings.USER_COOLDOWN_MS)
        self.bin_cooldown_ms = _pick(bin_cooldown_ms, settings.BIN_COOLDOWN_MS)
        self.user_product_cooldown_ms = _pick(
            user_product_cooldown_ms, settings.USER_PRODUCT_COOLDOWN_MS
        )
        self.user_product_cooldown_enabled = _pick(
            user_product_cooldown_enabled, settings.USER_PRODUCT_COOLDOWN_ENABLED
        )

    async def start_session(self, owner_identity: str) -> RecycleSession:
        user = await self._accounts.ensure_user(owner_identity)
        return await self.sessions.create(owner_identity=user.email, user_id=user.id)

    async def submit_product(self, session_id: str, barcode: str) -> RecycleSession:
        if self.user_product_cooldown_enabled:
            session = await self.sessions.get(session_id)
            if session.step is not SessionStep.PRODUCT:
                raise InvalidStep(SessionStep.PRODUCT.value, session.step.value)
            await self._enforce_cooldown(
                CooldownKey.for_user_product(session.user_id, barcode),
                self.user_product_cooldown_ms,
            )

        return await self.sessions.advance(session_id, SessionStep.PRODUCT, barcode)

    async def submit_bin(self, session_id: str, barcode: str) -> RecycleSession:
        return await self.sessions.advance(session_id, SessionStep.BIN, barcode)

    async def submit_video(
        self,
        session_id: str,
        video: bytes,
        frames: list[str],
        *,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> VideoSubmissionOutcome:
        """
        Run the gated verification attempt for a session at the video step.

        Raises:
            SessionNotFound, SessionExpired, InvalidStep, CooldownActive, DuplicateContent
        """
        claimed = await self.sessions.claim(session_id, SessionStep.VIDEO)
        video_hash = fingerprint(video)

        try:
            reservation = await self._cooldowns.reserve(
                [
                    (CooldownKey.for_user(claimed.user_id), self.user_cooldown_ms),
                    (CooldownKey.for_bin(claimed.bin_barcode), self.bin_cooldown_ms),
                ]
            )
        except CooldownActive:
            await self.sessions.restore(claimed, SessionStep.VIDEO)
            raise

        try:
            if not await self._video_hashes.reserve(video_hash):
                logger.warning("Duplicate video rejected", session_id=session_id, user_id=claimed.user_id)
                await self.sessions.restore(claimed, SessionStep.VIDEO)
                raise DuplicateContent("video")

            try:
                return await self._verify_and_record(claimed, video, video_hash, frames, filename, content_type)
            finally:
                await self._video_hashes.release(video_hash)
        finally:
            await self._cooldowns.release(reservation)

    async def _verify_and_record(
        self,
        claimed: RecycleSession,
        video: bytes,
        video_hash: str,
        frames: list[str],
        filename: str | None,
        content_type: str | None,
    ) -> VideoSubmissionOutcome:
        session_id = claimed.session_id

        logger.info("Verifying video", session_id=session_id, frames=len(frames))
        verification = await self._verifier.verify_frames(frames)

        video_url = await self._media.save(video, filename, content_type)
        points_awarded = self.recycle_points if verification.verified else 0

        try:
            event = await self._event_store.record_recycle_event(
                RecycleEvent(
                    user_id=claimed.user_id,
                    product_barcode=claimed.product_barcode,
                    bin_barcode=claimed.bin_barcode,
                    video_url=video_url,
                    video_hash=video_hash,
                    verified=verification.verified,
                    ai_confidence=verification.confidence,
                    ai_verdict=verification.verdict,
                    points_awarded=points_awarded,
                    timestamp=utc_from_clock(self._clock),
                )
            )
        except DuplicateEventError as e:
            await self._video_hashes.remember(video_hash)
            logger.warning("Duplicate video rejected by event store", session_id=session_id)
            raise DuplicateContent("video") from e

        await self._video_hashes.remember(video_hash)

        new_points = None
        if verification.verified:
            new_points = await self._ledger.award_points(claimed.user_id, points_awarded)
            await self._cooldowns.record_verified(
                [
                    CooldownKey.for_user(claimed.user_id),
                    CooldownKey.for_bin(claimed.bin_barcode),
                    CooldownKey.for_user_product(claimed.user_id, claimed.product_barcode),
                ],
                at_ms=datetime_to_ms(event.timestamp),
            )

        logger.info(
            "Video verification complete",
            session_id=session_id,
            user_id=claimed.user_id,
            verified=verification.verified,
            confidence=verification.confidence,
            points=points_awarded,
            failure=verification.failure.value if verification.failure else None,
        )

        return VideoSubmissionOutcome(
            verification=verification,
            points_awarded=points_awarded,
            video_url=video_url,
            event=event,
            new_points=new_points,
        )

    async def _enforce_cooldown(self, key: CooldownKey, window_ms: int) -> None:
        decision = await self._cooldowns.check_cooldown(key, window_ms)
        if not decision.allowed:
            raise CooldownActive(scope=key.scope, retry_after=decision.retry_after)
