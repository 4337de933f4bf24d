"""Account data export and deletion."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

import stripe
from sqlalchemy import delete
from sqlmodel import Session, SQLModel, col, select

from audisell.core.auth import get_user_role
from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.models.carousel import Carousel
from audisell.models.notification import Notification
from audisell.models.subscription import ManualSubscription, Subscription
from audisell.models.usage import ApiUsage, DailyUsage, UsageLog
from audisell.models.user import User
from audisell.models.verification import EmailVerification, PasswordReset
from audisell.services import storage

log = logging.getLogger(__name__)

API_USAGE_EXPORT_LIMIT = 100
SUBSCRIPTION_EXPORT_FIELDS = (
    "plan_tier",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "cancelled_at",
    "created_at",
)


def _dump(row: SQLModel, exclude: set[str] | None = None) -> Dict[str, Any]:
    return row.model_dump(mode="json", exclude=exclude)


def _dump_all(rows: List[Any], exclude: set[str] | None = None) -> List[Dict[str, Any]]:
    return [_dump(r, exclude) for r in rows]


def export_user_data(session: Session, user: User) -> Dict[str, Any]:
    """Everything stored about ``user`` except secrets and Stripe identifiers."""
    uid = user.id
    carousels = session.exec(
        select(Carousel).where(Carousel.user_id == uid).order_by(col(Carousel.created_at).desc())
    ).all()
    daily = session.exec(
        select(DailyUsage).where(DailyUsage.user_id == uid).order_by(col(DailyUsage.date).desc())
    ).all()
    api_usage = session.exec(
        select(ApiUsage)
        .where(ApiUsage.user_id == uid)
        .order_by(col(ApiUsage.created_at).desc())
        .limit(API_USAGE_EXPORT_LIMIT)
    ).all()
    notes = session.exec(
        select(Notification).where(Notification.user_id == uid).order_by(col(Notification.created_at).desc())
    ).all()
    sub = session.exec(select(Subscription).where(Subscription.user_id == uid)).first()

    user_data = _dump(user, exclude={"hashed_password", "stripe_customer_id", "preferences"})
    return {
        "exported_at": utcnow().isoformat(),
        "user": user_data,
        "profile": {
            "full_name": user.full_name,
            "instagram_handle": user.instagram_handle,
            "preferences": user.preferences or {},
        },
        "carousels": _dump_all(carousels),
        "daily_usage": _dump_all(daily),
        "subscription": sub.model_dump(mode="json", include=set(SUBSCRIPTION_EXPORT_FIELDS)) if sub else None,
        "api_usage": _dump_all(api_usage),
        "notifications": _dump_all(notes),
        "roles": [get_user_role(user)],
    }


def _cancel_stripe_subscription(sub: Subscription) -> None:
    if not (sub.stripe_subscription_id and settings.STRIPE_SECRET_KEY):
        return
    stripe.api_key = settings.STRIPE_SECRET_KEY
    try:
        stripe.Subscription.cancel(sub.stripe_subscription_id)
        log.info("event=account.stripe_cancelled subscription=%s", sub.stripe_subscription_id)
    except stripe.StripeError as exc:
        log.warning("event=account.stripe_cancel_failed subscription=%s err=%s", sub.stripe_subscription_id, exc)


def delete_account(session: Session, user: User) -> Dict[str, int]:
    """Remove the user and everything that references them. Returns per-table counts."""
    uid = user.id
    counts: Dict[str, int] = {}

    def _purge(name: str, model: Any, column: Any) -> None:
        result = session.execute(delete(model).where(column == uid))
        counts[name] = result.rowcount or 0

    _purge("notifications", Notification, Notification.user_id)
    _purge("api_usage", ApiUsage, ApiUsage.user_id)
    _purge("daily_usage", DailyUsage, DailyUsage.user_id)
    _purge("usage_logs", UsageLog, UsageLog.user_id)

    counts["files"] = storage.delete_prefix(storage.user_prefix(uid))
    counts["files"] += storage.delete_prefix(f"{storage.AUDIO_BUCKET}/{uid}")
    _purge("carousels", Carousel, Carousel.user_id)

    _purge("manual_subscriptions", ManualSubscription, ManualSubscription.user_id)
    sub = session.exec(select(Subscription).where(Subscription.user_id == uid)).first()
    if sub is not None:
        _cancel_stripe_subscription(sub)
        session.delete(sub)
        counts["subscriptions"] = 1

    _purge("email_verifications", EmailVerification, EmailVerification.user_id)
    _purge("password_resets", PasswordReset, PasswordReset.user_id)

    session.delete(user)
    session.commit()
    log.info("event=account.deleted user=%s counts=%s", uid, counts)
    return counts
