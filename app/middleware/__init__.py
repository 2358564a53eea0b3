"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID, client IP)
- Rate limiting (fixed window per ip|identity); the route dependency lives in
  app.middleware.rate_limit_dependencies
- CORS for the browser client
"""

from app.middleware.cors import CORSMiddleware
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "RateLimitHeadersMiddleware",
    "CORSMiddleware",
]
