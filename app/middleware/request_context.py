"""
RequestContext Middleware - request id and client address for every request.

Adds to request.state:
    request_id, ip_address, user_agent

The request id is bound into the structlog context for the lifetime of the
request and echoed back as X-Request-ID. ip_address feeds the rate limiter's
"<ip>|<identity>" key.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request.state Namespace Convention:
    - request_id, ip_address, user_agent: Set by RequestContextMiddleware
    - rate_limit_info: Set by the rate limit dependency
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                ip_address=request.state.ip_address,
            )
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response


def extract_client_ip(request: Request) -> str | None:
    """
    Client IP with proxy spoofing protection.

    X-Forwarded-For is only honoured when TRUST_X_FORWARDED_FOR is enabled and
    the direct peer is one of TRUSTED_PROXY_IPS; otherwise a client could pick
    its own rate-limit key.
    """
    direct_ip = request.client.host if request.client else None

    if not settings.TRUST_X_FORWARDED_FOR:
        return direct_ip

    if direct_ip and direct_ip in settings.TRUSTED_PROXY_IPS:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # "client, proxy1, proxy2"
            return forwarded_for.split(",")[0].strip()

    return direct_ip
