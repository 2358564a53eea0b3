"""
Service container - owns every stateful component of the running app.

Built once at startup and stored on app.state.container; routes reach it
through the get_container dependency. Tests build their own container with
a fake clock and a fake inference client.
"""

from dataclasses import dataclass

from fastapi import Request

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import (
    MemoryBucketBackend,
    RateLimiter,
    RedisBucketBackend,
)
from app.repositories.event_store import EventStore, InMemoryEventStore
from app.repositories.postgres_event_store import PostgresEventStore
from app.security.hashing import HashRegistry
from app.services.account_service import AccountService
from app.services.cooldown_tracker import CooldownTracker
from app.services.media_storage import LocalMediaStorage, MediaStorage
from app.services.recycle_service import RecycleService
from app.services.redis_client import fast_redis
from app.services.reward_ledger import RewardLedger
from app.services.session_store import InMemorySessionStore
from app.services.upload_service import UploadService
from app.services.verification_service import VerificationService
from app.utils.clock import Clock, system_clock

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    config: Settings
    event_store: EventStore
    sessions: InMemorySessionStore
    rate_limiter: RateLimiter
    cooldowns: CooldownTracker
    verifier: VerificationService
    accounts: AccountService
    recycle: RecycleService
    uploads: UploadService
    media: MediaStorage


def build_container(
    config: Settings = settings,
    *,
    clock: Clock = system_clock,
    event_store: EventStore | None = None,
    verifier: VerificationService | None = None,
    media: MediaStorage | None = None,
) -> ServiceContainer:
    """Wire the services for the configured backends."""
    if event_store is None:
        event_store = (
            PostgresEventStore() if config.EVENT_STORE_BACKEND == "postgres" else InMemoryEventStore()
        )

    if config.RATE_LIMIT_BACKEND == "redis":
        backend = RedisBucketBackend(fast_redis)
    else:
        backend = MemoryBucketBackend(clock)

    rate_limiter = RateLimiter(
        backend,
        default_limit=config.RATE_LIMIT_MAX,
        window_ms=config.RATE_LIMIT_WINDOW_MS,
        fail_open=config.RATE_LIMIT_FAIL_OPEN,
    )

    if verifier is None:
        verifier = VerificationService(
            api_key=config.OPENROUTER_API_KEY,
            model=config.OPENROUTER_MODEL,
            timeout_seconds=config.VERIFICATION_TIMEOUT_SECONDS,
            confidence_threshold=config.VERIFICATION_CONFIDENCE_THRESHOLD,
        )

    if media is None:
        media = LocalMediaStorage(config.UPLOAD_DIR)

    async def video_seen(digest: str) -> bool:
        return await event_store.find_recycle_event_by_hash(digest) is not None

    async def image_seen(digest: str) -> bool:
        return await event_store.find_disposal_event_by_hash(digest) is not None

    sessions = InMemorySessionStore(ttl_ms=config.SESSION_TTL_MS, clock=clock)
    ledger = RewardLedger(event_store, points_per_dollar=config.POINTS_PER_DOLLAR)
    accounts = AccountService(event_store, ledger)
    cooldowns = CooldownTracker(event_store, clock)

    recycle = RecycleService(
        sessions=sessions,
        event_store=event_store,
        accounts=accounts,
        cooldowns=cooldowns,
        video_hashes=HashRegistry(video_seen),
        verifier=verifier,
        ledger=ledger,
        media=media,
        clock=clock,
        recycle_points=config.RECYCLE_POINTS,
        user_cooldown_ms=config.USER_COOLDOWN_MS,
        bin_cooldown_ms=config.BIN_COOLDOWN_MS,
        user_product_cooldown_ms=config.USER_PRODUCT_COOLDOWN_MS,
        user_product_cooldown_enabled=config.USER_PRODUCT_COOLDOWN_ENABLED,
    )

    uploads = UploadService(
        event_store=event_store,
        accounts=accounts,
        image_hashes=HashRegistry(image_seen),
        verifier=verifier,
        ledger=ledger,
        media=media,
        clock=clock,
    )

    logger.info(
        "Service container built",
        event_store=type(event_store).__name__,
        rate_limit_backend=config.RATE_LIMIT_BACKEND,
        verification_configured=verifier.configured,
    )

    return ServiceContainer(
        config=config,
        event_store=event_store,
        sessions=sessions,
        rate_limiter=rate_limiter,
        cooldowns=cooldowns,
        verifier=verifier,
        accounts=accounts,
        recycle=recycle,
        uploads=uploads,
        media=media,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the app's container."""
    return request.app.state.container
