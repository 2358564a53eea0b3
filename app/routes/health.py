# app/routes/health.py
"""
Health check endpoints.

/healthz is liveness only. /readyz reports the backends the configuration
actually uses: the Postgres pool when EVENT_STORE_BACKEND=postgres, Redis
when RATE_LIMIT_BACKEND=redis, and whether the verification model has a key.
"""

import time

from fastapi import APIRouter, Depends

from app.db.pool import db_health_check
from app.services.container import ServiceContainer, get_container
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "clearcycle-backend"}


@router.get("/readyz")
async def readyz(container: ServiceContainer = Depends(get_container)):
    config = container.config
    checks = {}
    overall_ok = True

    if config.EVENT_STORE_BACKEND == "postgres":
        t0 = time.time()
        db_health = await db_health_check()
        checks["database"] = {
            "ok": db_health.get("healthy", False),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not db_health.get("healthy", False):
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and checks["database"]["ok"]

    if config.RATE_LIMIT_BACKEND == "redis":
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        # Rate limiting can fail open, so Redis only gates readiness when it must not
        if not config.RATE_LIMIT_FAIL_OPEN:
            overall_ok = overall_ok and redis_ok

    # Unverifiable submissions still succeed (fail-closed verdicts), so this is informational
    checks["verification"] = container.verifier.health_check()
    checks["sessions"] = {"ok": True, "active": len(container.sessions)}

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
