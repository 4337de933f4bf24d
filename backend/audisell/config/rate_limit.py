"""Rate limiting configuration for the FastAPI application."""
from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded as SlowAPIRateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI


def configure_rate_limiting(app: FastAPI) -> None:
    """Install the global slowapi limiter.

    Per-operation windows (transcription, checkout, ...) are route
    dependencies from ``audisell.core.rate_limiter``; this is the coarse
    per-IP ceiling across the whole API.
    """
    from audisell.core.cors import add_cors_headers_to_response
    from audisell.core.logging import get_logger
    from audisell.exceptions import error_payload
    from audisell.limits import DISABLE as RL_DISABLED, DEFAULT, limiter

    log = get_logger("audisell.config.rate_limit")
    if RL_DISABLED:
        log.warning("[startup] DISABLE_RATE_LIMITS=1 -> rate limiting disabled")
        return

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    async def _rate_limit_handler(request, exc):  # type: ignore
        response = JSONResponse(
            status_code=429,
            content=error_payload("rate_limit_exceeded", str(exc.detail), {"limit": DEFAULT}, request),
            headers={"Retry-After": "60"},
        )
        return add_cors_headers_to_response(response, request)

    app.add_exception_handler(SlowAPIRateLimitExceeded, _rate_limit_handler)  # type: ignore
    log.info("[startup] Global rate limit %s", DEFAULT)
