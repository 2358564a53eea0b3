# app/main.py
"""
ClearCycle API - application factory and resource lifecycle.

Startup builds the service container, opens the Postgres pool and Redis only
when the configured backends need them, and starts the session sweeper.
Shutdown runs in reverse order.
"""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.jobs.session_sweeper import start_session_sweeper
from app.middleware import CORSMiddleware, RateLimitHeadersMiddleware, RequestContextMiddleware
from app.repositories.postgres_event_store import PostgresEventStore
from app.routes import health, recycle, uploads, users
from app.services.container import ServiceContainer, build_container
from app.services.media_storage import PUBLIC_PREFIX
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def _startup_services(container: ServiceContainer, startup_tasks: list[str]) -> None:
    config = container.config

    if config.EVENT_STORE_BACKEND == "postgres":
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")
        if isinstance(container.event_store, PostgresEventStore):
            await container.event_store.ensure_schema()

    if config.RATE_LIMIT_BACKEND == "redis":
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")


async def _shutdown_services(startup_tasks: list[str]) -> list[str]:
    shutdown_errors = []

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    if "database_pool" in startup_tasks:
        try:
            logger.info("Closing database pool")
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
            shutdown_errors.append(f"Database: {e}")

    return shutdown_errors


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        container: Pre-built services (tests); built from settings when None
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting", environment=settings.environment, debug=settings.debug)

        app.state.container = container or build_container(settings)
        startup_tasks: list[str] = []

        try:
            await _startup_services(app.state.container, startup_tasks)
            logger.info("All services initialized successfully", services=startup_tasks)
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)
            await _shutdown_services(startup_tasks)
            raise

        sweeper = asyncio.create_task(start_session_sweeper(app.state.container))

        yield

        logger.info("Application shutting down")
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

        shutdown_errors = await _shutdown_services(startup_tasks)
        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All services closed successfully")

    app = FastAPI(
        title="ClearCycle",
        description="Verified recycling rewards: barcode scans plus AI-checked disposal video",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(recycle.router)
    app.include_router(uploads.router)
    app.include_router(users.router)

    # Serve from the same directory the container's media storage writes to
    upload_dir = container.config.UPLOAD_DIR if container is not None else settings.UPLOAD_DIR
    app.mount(
        PUBLIC_PREFIX,
        StaticFiles(directory=upload_dir, check_dir=False),
        name="uploads",
    )

    # Last added runs first: context must be set before rate-limit headers are read
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(CORSMiddleware, allowed_origins=settings.CORS_ALLOWED_ORIGINS)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies are client errors (400), shaped like every other rejection."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "error": "invalid_request",
                    "message": "Request validation failed",
                    "errors": [
                        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                        for err in exc.errors()
                    ],
                }
            },
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2),
            request_id=getattr(request.state, "request_id", None),
        )
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
