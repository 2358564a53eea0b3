"""
Session Sweeper Job - periodic eviction of expired in-memory state.

Expired sessions are already rejected lazily on access; the sweep keeps
abandoned ones from accumulating, drops closed rate-limit windows when the
memory backend is in use and forgets cooldown stamps older than the longest
enabled window. Runs as an asyncio task inside the API process since the
state it cleans is process-local.
"""

import asyncio

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import MemoryBucketBackend
from app.services.container import ServiceContainer

logger = get_logger(__name__)


def longest_cooldown_ms(config: Settings) -> int:
    windows = [config.USER_COOLDOWN_MS, config.BIN_COOLDOWN_MS]
    if config.USER_PRODUCT_COOLDOWN_ENABLED:
        windows.append(config.USER_PRODUCT_COOLDOWN_MS)
    return max(windows)


async def run_session_sweep(container: ServiceContainer) -> dict[str, int]:
    """One sweep pass; returns how many entries were removed."""
    sessions_removed = await container.sessions.sweep_expired()

    buckets_removed = 0
    backend = container.rate_limiter.backend
    if isinstance(backend, MemoryBucketBackend):
        buckets_removed = await backend.prune_expired()

    cooldowns_removed = await container.cooldowns.prune_expired(longest_cooldown_ms(container.config))

    metrics = {
        "sessions_removed": sessions_removed,
        "sessions_active": len(container.sessions),
        "buckets_removed": buckets_removed,
        "cooldowns_removed": cooldowns_removed,
    }
    if sessions_removed or buckets_removed or cooldowns_removed:
        logger.info("Session sweep completed", **metrics)
    return metrics


async def start_session_sweeper(container: ServiceContainer, interval_seconds: float | None = None):
    """Sweep forever at a fixed interval until cancelled."""
    interval = interval_seconds or container.config.SESSION_SWEEP_INTERVAL_SECONDS
    logger.info("Starting session sweeper", interval_seconds=interval)

    while True:
        try:
            await asyncio.sleep(interval)
            await run_session_sweep(container)
        except asyncio.CancelledError:
            logger.info("Session sweeper stopped")
            raise
        except Exception as e:
            logger.error("Error in session sweeper", error=str(e), error_type=type(e).__name__)
