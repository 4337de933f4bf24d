"""Builds the Audisell FastAPI application; ``app.py`` exposes it to ASGI servers."""
from __future__ import annotations

from fastapi import FastAPI
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

_APP_SINGLETON: FastAPI | None = None


def create_app(fresh: bool = False) -> FastAPI:
    """Assemble the app. Cached per process; tests pass ``fresh=True``.

    Order matters: logging before anything logs, middleware before routes,
    and the startup hook last so it sees the final app state.
    """
    global _APP_SINGLETON
    if _APP_SINGLETON is not None and not fresh:
        return _APP_SINGLETON

    from audisell.config.logging import configure_logging, setup_sentry
    from audisell.config.middleware import configure_middleware
    from audisell.config.rate_limit import configure_rate_limiting
    from audisell.config.routes import attach_routes, configure_static
    from audisell.config.startup import register_startup
    from audisell.core import database
    from audisell.core.config import settings
    from audisell.core.logging import get_logger
    from audisell.core.security import get_password_hash

    configure_logging()
    setup_sentry(settings)
    log = get_logger("audisell.main")

    app = FastAPI(title="Audisell API", debug=settings.is_dev_mode)
    # request.client and request.url reflect the load balancer's forwarded values
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    # First bcrypt call is slow; pay it before the first signup does
    get_password_hash("warmup")

    pool = database.pool_settings()
    log.info("[startup] db pool size=%s overflow=%s", pool.get("pool_size", "-"), pool.get("max_overflow", "-"))

    configure_middleware(app, settings)
    configure_rate_limiting(app)
    attach_routes(app)
    configure_static(app)
    register_startup(app)

    log.info("[startup] Audisell API ready (env=%s)", settings.env_name)
    _APP_SINGLETON = app
    return app


__all__ = ["create_app"]
