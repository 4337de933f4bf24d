"""Middleware stack and exception handlers."""
from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from audisell.core.logging import get_logger
from audisell.core.rate_limiter import RATE_LIMIT_HEADER_NAMES
from audisell.exceptions import install_exception_handlers
from audisell.middleware.request_id import HEADER as REQUEST_ID_HEADER, RequestIDMiddleware
from audisell.middleware.request_size_limit import RequestSizeLimitMiddleware
from audisell.middleware.security_headers import SecurityHeadersMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI
    from audisell.core.config import Settings

log = get_logger("audisell.config.middleware")

SESSION_COOKIE = "audisell_session"
SESSION_MAX_AGE = 14 * 24 * 3600
FIRST_PARTY_ORIGIN_REGEX = r"https://(?:[a-z0-9-]+\.)?audisell\.com"


def _session_cookie_options(settings: Settings) -> dict:
    # Deployed frontends live on another subdomain, which needs SameSite=None + Secure
    if settings.is_dev_mode:
        return {"same_site": "lax", "https_only": False}
    return {"same_site": "none", "https_only": True}


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Install middleware outermost-last: request id, then size limit, then security headers."""
    origins = settings.cors_allowed_origin_list

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET_KEY,
        session_cookie=SESSION_COOKIE,
        max_age=SESSION_MAX_AGE,
        **_session_cookie_options(settings),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=FIRST_PARTY_ORIGIN_REGEX,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
        expose_headers=[REQUEST_ID_HEADER, *RATE_LIMIT_HEADER_NAMES],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    install_exception_handlers(app)
    log.info("[startup] middleware ready dev=%s origins=%d", settings.is_dev_mode, len(origins))
