"""
Plan definitions and billing constants.

The static catalogue below is the source of truth until an admin saves
``planconfig`` rows; ``load_plan`` merges the two.
"""
import logging
import os
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from audisell.models.plan_config import PlanConfig

log = logging.getLogger(__name__)

PLAN_ORDER = ("free", "starter", "creator", "agency")
PAID_TIERS = ("starter", "creator", "agency")
TEMPLATES_BASIC = ("solid",)
TEMPLATES_ALL = ("solid", "gradient", "image_top")

ADMIN_DAILY_LIMIT = 9999
MANUAL_FALLBACK_DAILY_LIMIT = 8

FEATURE_KEYS = (
    "has_watermark",
    "has_editor",
    "has_history",
    "has_zip_download",
    "has_custom_fonts",
    "has_gradients",
    "has_slide_images",
)

# Prices in BRL cents
PLANS: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Gratuito",
        "price": 0,
        "daily_limit": 1,
        "monthly_limit": 1,  # one carousel per account
        "limit_period": "daily",
        "has_watermark": True,
        "has_editor": False,
        "has_history": False,
        "has_zip_download": False,
        "has_custom_fonts": False,
        "has_gradients": False,
        "has_slide_images": False,
        "templates": TEMPLATES_BASIC,
    },
    "starter": {
        "name": "Starter",
        "price": 990,
        "daily_limit": 1,
        "monthly_limit": 30,
        "limit_period": "daily",
        "has_watermark": False,
        "has_editor": True,
        "has_history": True,
        "has_zip_download": True,
        "has_custom_fonts": False,
        "has_gradients": False,
        "has_slide_images": False,
        "templates": TEMPLATES_BASIC,
    },
    "creator": {
        "name": "Creator",
        "price": 2990,
        "daily_limit": 8,
        "monthly_limit": None,  # fair usage
        "limit_period": "daily",
        "has_watermark": False,
        "has_editor": True,
        "has_history": True,
        "has_zip_download": True,
        "has_custom_fonts": True,
        "has_gradients": True,
        "has_slide_images": True,
        "templates": TEMPLATES_ALL,
    },
    "agency": {
        "name": "Agency",
        "price": 9990,
        "daily_limit": 20,
        "monthly_limit": None,
        "limit_period": "daily",
        "has_watermark": False,
        "has_editor": True,
        "has_history": True,
        "has_zip_download": True,
        "has_custom_fonts": True,
        "has_gradients": True,
        "has_slide_images": True,
        "templates": TEMPLATES_ALL,
    },
}

# Stripe price ids configured per deployment
STRIPE_PRICE_IDS: Dict[str, str] = {
    tier: os.getenv(f"STRIPE_PRICE_{tier.upper()}", "") for tier in PAID_TIERS
}

# Checkout amounts used when no planconfig row carries a price (BRL cents)
CHECKOUT_FALLBACK_PRICES_BRL: Dict[str, int] = {
    "starter": 2990,
    "creator": 9990,
    "agency": 19990,
}
CURRENCY_FACTORS: Dict[str, float] = {"brl": 1.0, "usd": 0.17, "eur": 0.16}
SUPPORTED_CURRENCIES = tuple(CURRENCY_FACTORS)

# Active Stripe unit amounts -> tier
PRICE_TO_PLAN: Dict[int, str] = {
    2990: "starter",
    9990: "creator",
    19990: "agency",
}


def normalize_tier(tier: Optional[str]) -> str:
    key = (tier or "free").strip().lower()
    return key if key in PLANS else "free"


def get_plan(tier: Optional[str]) -> Dict[str, Any]:
    """Static plan for ``tier``; unknown tiers fall back to free."""
    key = normalize_tier(tier)
    return {"tier": key, **PLANS[key]}


def get_daily_limit(tier: Optional[str]) -> int:
    return get_plan(tier)["daily_limit"]


def is_paid_plan(tier: Optional[str]) -> bool:
    return (tier or "").strip().lower() in PAID_TIERS


def can_access_template(tier: Optional[str], template: str) -> bool:
    return template in get_plan(tier)["templates"]


def plan_features(tier: Optional[str]) -> Dict[str, bool]:
    plan = get_plan(tier)
    return {k: bool(plan[k]) for k in FEATURE_KEYS}


def admin_plan() -> Dict[str, Any]:
    """Admins get the creator feature set with an effectively unlimited quota."""
    return {**get_plan("creator"), "daily_limit": ADMIN_DAILY_LIMIT}


def plan_for_amount(unit_amount: Optional[int]) -> str:
    return PRICE_TO_PLAN.get(int(unit_amount or 0), "starter")


def _plan_config_row(session: Session, tier: str):
    try:
        return session.exec(select(PlanConfig).where(PlanConfig.tier == tier)).first()
    except SQLAlchemyError as exc:
        session.rollback()
        log.warning("event=plans.config_lookup_failed tier=%s err=%s", tier, exc)
        return None


def load_plan(session: Optional[Session], tier: Optional[str]) -> Dict[str, Any]:
    """Effective plan: the ``planconfig`` row for ``tier`` when present, else the static plan."""
    plan = get_plan(tier)
    if session is None:
        return plan
    row = _plan_config_row(session, plan["tier"])
    if row is None:
        return plan
    merged = dict(plan)
    merged.update(
        name=row.name,
        daily_limit=row.daily_limit,
        monthly_limit=row.monthly_limit,
        limit_period=getattr(row.limit_period, "value", row.limit_period),
        price=row.price_brl,
        is_active=row.is_active,
    )
    for key in FEATURE_KEYS:
        merged[key] = bool(getattr(row, key))
    if row.has_gradients or row.has_slide_images:
        merged["templates"] = TEMPLATES_ALL
    merged["row"] = row
    return merged


def get_plan_by_price_id(price_id: Optional[str], session: Optional[Session] = None) -> Optional[str]:
    """Map a Stripe price id to a tier using planconfig rows, then the env-configured ids."""
    if not price_id:
        return None
    if session is not None:
        try:
            for row in session.exec(select(PlanConfig)).all():
                if price_id in (row.stripe_price_id_brl, row.stripe_price_id_usd, row.stripe_price_id_eur):
                    return row.tier
        except SQLAlchemyError as exc:
            session.rollback()
            log.warning("event=plans.price_lookup_failed price_id=%s err=%s", price_id, exc)
    for tier, configured in STRIPE_PRICE_IDS.items():
        if configured and configured == price_id:
            return tier
    return None


def checkout_amount(tier: str, currency: str, row: Any = None) -> int:
    """Unit amount in cents for a checkout of ``tier`` in ``currency``."""
    currency = currency.lower()
    if row is not None:
        explicit = getattr(row, f"price_{currency}", None)
        if explicit:
            return int(explicit)
        base = row.price_brl or CHECKOUT_FALLBACK_PRICES_BRL[tier]
    else:
        base = CHECKOUT_FALLBACK_PRICES_BRL[tier]
    return int(round(base * CURRENCY_FACTORS[currency]))


def plan_config_from_static(tier: str) -> PlanConfig:
    """Unsaved ``planconfig`` row carrying the static catalogue values for ``tier``."""
    plan = get_plan(tier)
    return PlanConfig(
        tier=plan["tier"],
        name=plan["name"],
        daily_limit=plan["daily_limit"],
        monthly_limit=plan["monthly_limit"],
        limit_period=plan["limit_period"],
        price_brl=plan["price"],
        stripe_price_id_brl=STRIPE_PRICE_IDS.get(plan["tier"]) or None,
        **{key: plan[key] for key in FEATURE_KEYS},
    )
