"""Admin API under /api/admin. Every sub-router guards itself with get_current_admin_user."""
import logging
from importlib import import_module

from fastapi import APIRouter

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

# (module, mount prefix, extra tag)
_SUBROUTERS = (
    ("stats", "", None),
    ("users", "/users", "Admin Users"),
    ("subscriptions", "/manual-subscriptions", "Admin Subscriptions"),
    ("settings", "", None),
    ("prompts", "/prompts", "Admin Prompts"),
    ("plans", "/plans", "Admin Plans"),
    ("trends", "/trends", "Admin Trends"),
    ("broadcasts", "/broadcasts", "Admin Broadcasts"),
    ("maintenance", "", None),
    ("logs", "", None),
)

for _name, _prefix, _tag in _SUBROUTERS:
    # A sub-router that fails to import is logged and left out; the rest still mount
    try:
        _module = import_module(f"{__name__}.{_name}")
    except Exception:
        log.exception("event=admin.subrouter_failed module=%s", _name)
        continue
    router.include_router(_module.router, prefix=_prefix, tags=[_tag] if _tag else None)

log.debug("admin router mounted %d routes", len(router.routes))

__all__ = ["router"]
