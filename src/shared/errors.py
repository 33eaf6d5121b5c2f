"""Application-wide exception handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from src.config.settings import settings
from src.shared.rate_limit import rate_limit_handler

logger = logging.getLogger(__name__)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unexpected with its traceback and answer 500.

    The exception text is only returned outside production.
    """
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}", exc_info=exc)

    content = {"detail": "Internal server error"}
    if not settings.is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the rate limit and catch-all handlers on the app."""
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
