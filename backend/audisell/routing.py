"""Router registry. Each router is imported on its own so one broken module
does not take the whole API down; missing ones are reported at startup."""
from __future__ import annotations

import logging
from importlib import import_module
from typing import Optional

from fastapi import APIRouter, FastAPI

log = logging.getLogger(__name__)

# (name, module, mount prefix); health mounts its own /api/health paths
ROUTERS = (
    ("health", "audisell.routers.health", ""),
    ("auth", "audisell.routers.auth", "/api"),
    ("carousels", "audisell.routers.carousels", "/api"),
    ("transcribe", "audisell.routers.transcribe", "/api"),
    ("scripts", "audisell.routers.scripts", "/api"),
    ("subscription", "audisell.routers.subscription", "/api"),
    ("billing", "audisell.routers.billing", "/api"),
    ("billing_webhook", "audisell.routers.billing_webhook", "/api"),
    ("account", "audisell.routers.account", "/api"),
    ("notifications", "audisell.routers.notifications", "/api"),
    ("translate", "audisell.routers.translate", "/api"),
    ("public", "audisell.routers.public", "/api"),
    ("admin", "audisell.routers.admin", "/api"),
)

# Without these the service cannot do its job
CRITICAL_ROUTERS = ("auth", "carousels", "billing_webhook")


def load_router(module: str) -> Optional[APIRouter]:
    try:
        return getattr(import_module(module), "router", None)
    except Exception:
        log.exception("event=router.import_failed module=%s", module)
        return None


def attach_routers(app: FastAPI) -> dict[str, bool]:
    """Include every importable router; returns name -> mounted."""
    mounted: dict[str, bool] = {}
    for name, module, prefix in ROUTERS:
        router = load_router(module)
        if router is not None:
            app.include_router(router, prefix=prefix)
        mounted[name] = router is not None
    log.info("event=routers.mounted ok=%d missing=%s", sum(mounted.values()), [n for n, ok in mounted.items() if not ok])
    return mounted
