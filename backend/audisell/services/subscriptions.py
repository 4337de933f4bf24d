"""Effective plan resolution: admin, manual grant, Stripe mirror, grace period, free."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlmodel import Session, select

from audisell.billing import plans
from audisell.core.auth import is_admin
from audisell.core.clock import as_utc, utcnow
from audisell.models.subscription import ManualSubscription, Subscription
from audisell.models.user import User
from audisell.services.usage import usage_for_period

log = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing", "past_due")


class SubscriptionState(BaseModel):
    subscribed: bool = False
    plan: str = "free"
    price_id: Optional[str] = None
    subscription_end: Optional[datetime] = None
    daily_limit: int = 1
    limit_period: str = "daily"
    period_used: int = 0
    daily_used: int = 0
    has_watermark: bool = True
    has_editor: bool = False
    has_history: bool = False
    is_admin: bool = False
    is_manual: bool = False
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None
    failed_payment_count: int = 0
    status: Optional[str] = None

    @property
    def quota_exhausted(self) -> bool:
        return self.period_used >= self.daily_limit


def _state_for_plan(session: Session, user: User, plan: Dict[str, Any], **overrides) -> SubscriptionState:
    limit_period = plan.get("limit_period") or "daily"
    period_used = usage_for_period(session, user.id, limit_period)
    daily_used = period_used if limit_period == "daily" else usage_for_period(session, user.id, "daily")
    values: Dict[str, Any] = {
        "plan": plan["tier"],
        "daily_limit": plan["daily_limit"],
        "limit_period": limit_period,
        "period_used": period_used,
        "daily_used": daily_used,
        "has_watermark": bool(plan["has_watermark"]),
        "has_editor": bool(plan["has_editor"]),
        "has_history": bool(plan["has_history"]),
    }
    values.update(overrides)
    return SubscriptionState(**values)


def _active_manual_subscription(session: Session, user: User, now: datetime) -> Optional[ManualSubscription]:
    rows = session.exec(
        select(ManualSubscription)
        .where(ManualSubscription.user_id == user.id, ManualSubscription.is_active == True)  # noqa: E712
        .order_by(ManualSubscription.created_at.desc())
    ).all()
    for row in rows:
        if row.expires_at is None or as_utc(row.expires_at) > now:
            return row
        log.info("event=subscription.manual_expired user=%s expires_at=%s", user.id, row.expires_at)
    return None


def resolve_subscription(session: Session, user: User, now: Optional[datetime] = None) -> SubscriptionState:
    """Work out which plan ``user`` is on right now and how much of it is used."""
    now = as_utc(now or utcnow())

    if is_admin(user):
        return _state_for_plan(
            session, user, plans.admin_plan(),
            subscribed=True, is_admin=True, limit_period="daily",
        )

    manual = _active_manual_subscription(session, user, now)
    if manual is not None:
        plan = plans.load_plan(session, manual.plan_tier)
        limit = manual.custom_daily_limit or plan.get("daily_limit") or plans.MANUAL_FALLBACK_DAILY_LIMIT
        return _state_for_plan(
            session, user, {**plan, "daily_limit": limit},
            subscribed=True, is_manual=True, subscription_end=manual.expires_at, status="active",
        )

    sub = session.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if sub is not None and sub.current_period_end and as_utc(sub.current_period_end) > now:
        in_paid_state = sub.status in ACTIVE_STATUSES
        in_grace = sub.status in ("cancelled", "canceled")
        if (in_paid_state or in_grace) and plans.is_paid_plan(sub.plan_tier):
            plan = plans.load_plan(session, sub.plan_tier)
            return _state_for_plan(
                session, user, plan,
                subscribed=True,
                price_id=sub.price_id,
                subscription_end=sub.current_period_end,
                cancel_at_period_end=sub.cancel_at_period_end or in_grace,
                cancelled_at=sub.cancelled_at,
                failed_payment_count=sub.failed_payment_count,
                status=sub.status,
            )

    overrides: Dict[str, Any] = {}
    if sub is not None:
        overrides = {
            "status": sub.status,
            "failed_payment_count": sub.failed_payment_count,
            "cancelled_at": sub.cancelled_at,
        }
    return _state_for_plan(session, user, plans.load_plan(session, "free"), **overrides)


def effective_plan(session: Session, user: User) -> Dict[str, Any]:
    """The plan dict (features included) backing the user's current subscription state."""
    if is_admin(user):
        return plans.admin_plan()
    return plans.load_plan(session, resolve_subscription(session, user).plan)
