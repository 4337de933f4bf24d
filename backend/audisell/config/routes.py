"""Routes and static file configuration for the FastAPI application."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.staticfiles import StaticFiles

if TYPE_CHECKING:
    from fastapi import FastAPI


def attach_routes(app: FastAPI) -> None:
    """Attach all routers and the liveness/readiness endpoints."""
    from audisell.core import database
    from audisell.core.cors import allowed_origin
    from audisell.core.logging import get_logger
    from audisell.core.config import settings
    from audisell.limits import exempt
    from audisell.routing import CRITICAL_ROUTERS, attach_routers

    log = get_logger("audisell.config.routes")

    mounted = attach_routers(app)
    broken = [name for name in CRITICAL_ROUTERS if not mounted.get(name)]
    if broken:
        log.error("[startup] critical routers missing: %s", ", ".join(broken))
        if settings.is_prod_mode:
            raise RuntimeError(f"Critical routers failed to import: {broken}")

    # --- Health Check Endpoints ---
    @app.get("/api/health")
    @exempt
    def api_health_alias():
        return {"status": "ok"}

    @app.get("/healthz")
    @exempt
    def healthz():
        return {"ok": True}

    @app.get("/readyz")
    @exempt
    def readyz():
        phase = getattr(app.state, "startup_phase", None)
        try:
            with database.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return {"ok": True, "startup": phase}
        except Exception as e:
            return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})

    # --- Global CORS Preflight Handler ---
    @app.options("/{path:path}")
    def cors_preflight_handler(path: str, request: Request):  # type: ignore[override]
        chosen = allowed_origin(request.headers.get("origin"))
        requested_headers = request.headers.get("access-control-request-headers")

        resp = Response(status_code=204)
        if chosen:
            resp.headers["Access-Control-Allow-Origin"] = chosen
            resp.headers["Access-Control-Allow-Credentials"] = "true"
            resp.headers["Vary"] = "Origin, Referer"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = requested_headers or "*"
        resp.headers["Access-Control-Max-Age"] = "600"
        return resp


def configure_static(app: FastAPI) -> None:
    """Serve rendered slides from MEDIA_ROOT under MEDIA_URL_PREFIX."""
    from audisell.core.config import settings

    media_root = Path(settings.MEDIA_ROOT)
    media_root.mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.MEDIA_URL_PREFIX,
        StaticFiles(directory=str(media_root), check_dir=False),
        name="media",
    )
