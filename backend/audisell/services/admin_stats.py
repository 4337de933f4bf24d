"""Aggregations behind the admin dashboard."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session, func, select

from audisell.billing import plans
from audisell.core.clock import as_utc, utcnow
from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.subscription import ManualSubscription, Subscription
from audisell.models.usage import ApiName, ApiUsage
from audisell.models.user import User
from audisell.services.usage import GEMINI_COST_PER_1K_INPUT, GEMINI_COST_PER_1K_OUTPUT, WHISPER_COST_PER_SECOND

log = logging.getLogger(__name__)

USAGE_PERIODS = {"today": 0, "week": 7, "month": 30}
REVENUE_PERIODS = {"7d": 7, "30d": 30, "90d": 90}
PAYING_STATUSES = ("active", "trialing", "past_due")


def _midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _count(session: Session, stmt) -> int:
    return int(session.exec(stmt).one() or 0)


def overview(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    total_users = _count(session, select(func.count()).select_from(User))
    total_carousels = _count(session, select(func.count()).select_from(Carousel))
    pro_users = _count(
        session,
        select(func.count()).select_from(Subscription).where(
            Subscription.status == "active", Subscription.plan_tier != "free"
        ),
    )
    active_today = _count(
        session,
        select(func.count()).select_from(Carousel).where(Carousel.created_at >= _midnight(now)),
    )
    by_status = {s.value: 0 for s in CarouselStatus}
    for status, n in session.exec(select(Carousel.status, func.count()).group_by(Carousel.status)).all():
        by_status[getattr(status, "value", status)] = int(n)
    return {
        "total_users": total_users,
        "total_carousels": total_carousels,
        "pro_users": pro_users,
        "active_today": active_today,
        "carousels_by_status": by_status,
    }


def daily_metrics(session: Session, days: int = 30, now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Signups and carousels per day for the last ``days`` days (zero-filled)."""
    now = now or utcnow()
    start = _midnight(now) - timedelta(days=days - 1)
    buckets = [(start + timedelta(days=i)).date().isoformat() for i in range(days)]
    signups = dict.fromkeys(buckets, 0)
    carousels = dict.fromkeys(buckets, 0)

    for created in session.exec(select(User.created_at).where(User.created_at >= start)).all():
        key = created.date().isoformat()
        if key in signups:
            signups[key] += 1
    for created in session.exec(select(Carousel.created_at).where(Carousel.created_at >= start)).all():
        key = created.date().isoformat()
        if key in carousels:
            carousels[key] += 1

    return {
        "signups": [{"date": d, "count": signups[d]} for d in buckets],
        "carousels": [{"date": d, "count": carousels[d]} for d in buckets],
    }


def api_usage(session: Session, period: str = "today", now: Optional[datetime] = None) -> Dict[str, Any]:
    if period not in USAGE_PERIODS:
        raise ValueError("period must be one of: today, week, month")
    now = now or utcnow()
    start = _midnight(now) - timedelta(days=USAGE_PERIODS[period])
    rows = session.exec(select(ApiUsage).where(ApiUsage.created_at >= start)).all()

    whisper = [r for r in rows if r.api_name == ApiName.whisper]
    gemini = [r for r in rows if r.api_name == ApiName.gemini]
    whisper_seconds = sum(r.audio_seconds or 0 for r in whisper)
    tokens_in = sum(r.tokens_input or 0 for r in gemini)
    tokens_out = sum(r.tokens_output or 0 for r in gemini)

    whisper_cost = whisper_seconds * WHISPER_COST_PER_SECOND
    gemini_cost = tokens_in / 1000 * GEMINI_COST_PER_1K_INPUT + tokens_out / 1000 * GEMINI_COST_PER_1K_OUTPUT
    return {
        "period": period,
        "whisper": {"calls": len(whisper), "seconds": round(whisper_seconds, 2), "cost_usd": round(whisper_cost, 4)},
        "gemini": {
            "calls": len(gemini),
            "input_tokens": tokens_in,
            "output_tokens": tokens_out,
            "cost_usd": round(gemini_cost, 4),
        },
        "total_cost_usd": round(whisper_cost + gemini_cost, 4),
    }


def revenue(session: Session, period: str = "30d", now: Optional[datetime] = None) -> Dict[str, Any]:
    if period not in REVENUE_PERIODS:
        raise ValueError("period must be one of: 7d, 30d, 90d")
    now = as_utc(now or utcnow())
    start = now - timedelta(days=REVENUE_PERIODS[period])

    subs = session.exec(select(Subscription)).all()
    active = [s for s in subs if s.status in PAYING_STATUSES and plans.is_paid_plan(s.plan_tier)]
    manual_active = _count(
        session,
        select(func.count()).select_from(ManualSubscription).where(ManualSubscription.is_active == True),  # noqa: E712
    )
    by_plan: Dict[str, int] = {}
    for sub in active:
        by_plan[sub.plan_tier] = by_plan.get(sub.plan_tier, 0) + 1

    mrr_cents = sum(plans.load_plan(session, s.plan_tier)["price"] for s in active)
    cancelled_in_period = [
        s for s in subs
        if s.cancelled_at is not None and as_utc(s.cancelled_at) >= start
    ]
    churn = (len(cancelled_in_period) / len(active) * 100) if active else 0.0
    mrr = mrr_cents / 100
    return {
        "period": period,
        "subscriptions": {
            "total": len(subs),
            "active": len(active),
            "manual": manual_active,
            "by_plan": by_plan,
        },
        "revenue": {
            "currency": "BRL",
            "mrr": round(mrr, 2),
            "estimated_annual": round(mrr * 12, 2),
            "average_value": round(mrr / len(active), 2) if active else 0.0,
            "churn_rate": round(churn, 2),
            "cancelled_in_period": len(cancelled_in_period),
        },
    }
