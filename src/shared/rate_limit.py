"""Request rate limiting (slowapi)."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config.settings import settings

logger = logging.getLogger(__name__)

# Default limit applies to every route through SlowAPIMiddleware; auth routes
# add their own stricter limits with @limiter.limit(...)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)


def rate_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle rate limit exceeded errors.

    Kept synchronous: SlowAPIMiddleware calls the registered handler without awaiting it.
    """
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
    )
