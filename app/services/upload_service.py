"""
Upload Service - single-image disposal submissions without the barcode flow.

The image is fingerprinted, checked against previously stored uploads, run
through the same verification model as the video flow (as a one-frame
submission) and recorded as a DisposalEvent. Points follow the item-type
table and are only credited when verified.
"""

import base64
from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import DisposalEvent, VerificationResult
from app.repositories.event_store import DuplicateEventError, EventStore
from app.security.hashing import HashRegistry, fingerprint
from app.services.account_service import AccountService
from app.services.media_storage import MediaStorage
from app.services.recycle_errors import DuplicateContent
from app.services.reward_ledger import RewardLedger, points_for_item_type
from app.services.verification_service import VerificationService
from app.utils.clock import Clock, system_clock, utc_from_clock

logger = get_logger(__name__)


@dataclass(slots=True)
class UploadOutcome:
    verification: VerificationResult
    points_awarded: int
    image_url: str
    event: DisposalEvent
    new_points: int | None = None


def image_as_frame(content: bytes, content_type: str | None) -> str:
    mime = content_type if content_type and content_type.startswith("image/") else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


class UploadService:
    def __init__(
        self,
        *,
        event_store: EventStore,
        accounts: AccountService,
        image_hashes: HashRegistry,
        verifier: VerificationService,
        ledger: RewardLedger,
        media: MediaStorage,
        clock: Clock = system_clock,
    ):
        self._event_store = event_store
        self._accounts = accounts
        self._image_hashes = image_hashes
        self._verifier = verifier
        self._ledger = ledger
        self._media = media
        self._clock = clock

    async def submit_image(
        self,
        email: str,
        item_type: str,
        image: bytes,
        *,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> UploadOutcome:
        """
        Raises:
            DuplicateContent: the same image bytes were already submitted
        """
        image_hash = fingerprint(image)
        if not await self._image_hashes.reserve(image_hash):
            raise DuplicateContent("image")

        try:
            return await self._verify_and_record(email, item_type, image, image_hash, filename, content_type)
        finally:
            await self._image_hashes.release(image_hash)

    async def _verify_and_record(
        self,
        email: str,
        item_type: str,
        image: bytes,
        image_hash: str,
        filename: str | None,
        content_type: str | None,
    ) -> UploadOutcome:
        user = await self._accounts.ensure_user(email)
        verification = await self._verifier.verify_frames([image_as_frame(image, content_type)])

        image_url = await self._media.save(image, filename, content_type)
        points_awarded = points_for_item_type(item_type) if verification.verified else 0

        try:
            event = await self._event_store.record_disposal_event(
                DisposalEvent(
                    user_id=user.id,
                    item_type=(item_type or "other").strip().lower(),
                    image_url=image_url,
                    image_hash=image_hash,
                    verified=verification.verified,
                    points_awarded=points_awarded,
                    timestamp=utc_from_clock(self._clock),
                )
            )
        except DuplicateEventError as e:
            await self._image_hashes.remember(image_hash)
            raise DuplicateContent("image") from e

        await self._image_hashes.remember(image_hash)

        new_points = None
        if verification.verified:
            new_points = await self._ledger.award_points(user.id, points_awarded)

        logger.info(
            "Image upload processed",
            user_id=user.id,
            item_type=event.item_type,
            verified=verification.verified,
            points=points_awarded,
        )

        return UploadOutcome(
            verification=verification,
            points_awarded=points_awarded,
            image_url=image_url,
            event=event,
            new_points=new_points,
        )
