"""
Rate Limit Dependencies - per-identity throttling for the recycle API.

The bucket key is "<client ip>|<claimed identity>". The identity is resolved
from, in order:
    1. X-Owner-Identity header
    2. ?email= query parameter
    3. the owner of the session named in the path
    4. "email" in a JSON request body
    5. "anonymous"

Usage:
    @router.post("/session/start")
    async def start(..., _rate: None = Depends(rate_limit_recycle)):
        ...
"""

import json

from fastapi import Depends, HTTPException, Request, status

from app.infrastructure.observability.logging import get_logger
from app.services.account_service import normalize_identity
from app.services.container import ServiceContainer, get_container
from app.services.recycle_errors import RateLimited

logger = get_logger(__name__)

ANONYMOUS_IDENTITY = "anonymous"


async def resolve_claimed_identity(request: Request, container: ServiceContainer) -> str:
    identity = request.headers.get("x-owner-identity") or request.query_params.get("email")
    if identity:
        return normalize_identity(identity)

    session_id = request.path_params.get("session_id")
    if session_id:
        owner = await container.sessions.owner_of(session_id)
        if owner:
            return owner

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict) and isinstance(body.get("email"), str) and body["email"].strip():
            return normalize_identity(body["email"])

    return ANONYMOUS_IDENTITY


async def rate_limit_recycle(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> None:
    """
    Count the request against the caller's fixed window.

    Raises:
        HTTPException: 429 with Retry-After if the window is exhausted
    """
    if not container.config.RATE_LIMIT_ENABLED:
        return

    ip_address = getattr(request.state, "ip_address", None) or "unknown"
    identity = await resolve_claimed_identity(request, container)
    key = f"{ip_address}|{identity}"

    allowed, info = await container.rate_limiter.check_rate_limit(key)
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "Rate limit exceeded",
            key=key,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        error = RateLimited(retry_after=info["retry_after"], limit=info["limit"])
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error.to_detail(),
            headers=error.headers(),
        )
