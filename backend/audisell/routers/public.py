"""Unauthenticated endpoints used by the landing page and the SPA bootstrap."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from audisell.billing import plans
from audisell.core.database import get_session
from audisell.models.settings import load_admin_settings, load_feature_flags

router = APIRouter(tags=["public"])


def _prices(plan: Dict[str, Any]) -> Dict[str, int]:
    row = plan.get("row")
    base = int(plan.get("price") or 0)
    out = {"brl": base}
    for currency in ("usd", "eur"):
        explicit = getattr(row, f"price_{currency}", None) if row is not None else None
        out[currency] = int(explicit) if explicit else int(round(base * plans.CURRENCY_FACTORS[currency]))
    return out


@router.get("/plans")
def list_plans(session: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    """Active plans in display order, prices in cents per currency."""
    out: List[Dict[str, Any]] = []
    for tier in plans.PLAN_ORDER:
        plan = plans.load_plan(session, tier)
        if not plan.get("is_active", True):
            continue
        out.append({
            "tier": tier,
            "name": plan["name"],
            "daily_limit": plan["daily_limit"],
            "monthly_limit": plan.get("monthly_limit"),
            "limit_period": plan.get("limit_period") or "daily",
            "prices": _prices(plan),
            "templates": list(plan["templates"]),
            "features": {k: bool(plan[k]) for k in plans.FEATURE_KEYS},
        })
    return out


@router.get("/public/config")
def public_config(session: Session = Depends(get_session)) -> Dict[str, Any]:
    admin_settings = load_admin_settings(session)
    return {
        "feature_flags": load_feature_flags(session).model_dump(),
        "maintenance_mode": admin_settings.maintenance_mode,
        "maintenance_message": admin_settings.maintenance_message if admin_settings.maintenance_mode else None,
        "signups_enabled": admin_settings.signups_enabled,
        "default_language": admin_settings.default_language,
        "max_audio_seconds": admin_settings.max_audio_seconds,
    }
