"""
Stripe webhook event handlers.

Each handler receives the open session and the event's ``data.object`` and
mirrors it onto the local ``subscription`` row and ``user.plan_tier``. The
router owns signature checks and idempotency; handlers only apply state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID

import stripe
from sqlmodel import Session, select

from audisell.billing import plans
from audisell.core import crud
from audisell.core.clock import utcnow
from audisell.models.subscription import Subscription
from audisell.models.user import User
from audisell.services import notifications

log = logging.getLogger(__name__)

MAX_PAYMENT_ATTEMPTS = 3
ACTIVE_STRIPE_STATUSES = ("active", "trialing", "past_due")

STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "unpaid": "past_due",
    "incomplete": "incomplete",
    "incomplete_expired": "cancelled",
}


def _ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _as_uuid(value: Any) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _first_item(stripe_sub: Any) -> Dict[str, Any]:
    items = ((stripe_sub or {}).get("items") or {}).get("data") or []
    return items[0] if items else {}


def _price_of(stripe_sub: Any) -> tuple[Optional[str], Optional[int]]:
    price = _first_item(stripe_sub).get("price") or {}
    return price.get("id"), price.get("unit_amount")


def _period_of(stripe_sub: Any) -> tuple[Optional[datetime], Optional[datetime]]:
    # Newer API versions carry the period on the subscription item
    item = _first_item(stripe_sub)
    start = stripe_sub.get("current_period_start") or item.get("current_period_start")
    end = stripe_sub.get("current_period_end") or item.get("current_period_end")
    return _ts(start), _ts(end)


def _tier_for(session: Session, stripe_sub: Any, hint: Optional[str] = None) -> str:
    if hint and plans.is_paid_plan(hint):
        return hint
    meta_tier = ((stripe_sub or {}).get("metadata") or {}).get("plan_tier")
    if meta_tier and plans.is_paid_plan(meta_tier):
        return meta_tier
    price_id, amount = _price_of(stripe_sub)
    return plans.get_plan_by_price_id(price_id, session) or plans.plan_for_amount(amount)


def find_user_for_checkout(session: Session, obj: Dict[str, Any]) -> Optional[User]:
    """metadata.user_id, then client_reference_id, then the customer email."""
    for candidate in ((obj.get("metadata") or {}).get("user_id"), obj.get("client_reference_id")):
        uid = _as_uuid(candidate) if candidate else None
        if uid is not None:
            user = session.get(User, uid)
            if user is not None:
                return user
    email = (obj.get("customer_details") or {}).get("email") or obj.get("customer_email")
    if email:
        return crud.get_user_by_email(session, email)
    return None


def _subscription_for(session: Session, stripe_subscription_id: Optional[str], customer_id: Optional[str]) -> Optional[Subscription]:
    if stripe_subscription_id:
        row = session.exec(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        ).first()
        if row is not None:
            return row
    if customer_id:
        return session.exec(select(Subscription).where(Subscription.stripe_customer_id == customer_id)).first()
    return None


def upsert_subscription(session: Session, user: User, stripe_sub: Any, customer_id: Optional[str], tier: str) -> Subscription:
    row = session.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if row is None:
        row = Subscription(user_id=user.id)
    start, end = _period_of(stripe_sub)
    price_id, _ = _price_of(stripe_sub)
    row.stripe_customer_id = customer_id or row.stripe_customer_id
    row.stripe_subscription_id = stripe_sub.get("id") or row.stripe_subscription_id
    row.plan_tier = tier
    row.price_id = price_id or row.price_id
    row.status = STATUS_MAP.get(stripe_sub.get("status") or "active", "incomplete")
    row.current_period_start = start or row.current_period_start
    row.current_period_end = end or row.current_period_end
    row.cancel_at_period_end = bool(stripe_sub.get("cancel_at_period_end"))
    row.cancelled_at = None
    row.scheduled_downgrade_tier = None
    row.failed_payment_count = 0
    row.updated_at = utcnow()
    session.add(row)
    return row


def handle_checkout_completed(session: Session, obj: Dict[str, Any]) -> None:
    user = find_user_for_checkout(session, obj)
    if user is None:
        log.warning("event=billing.checkout_user_missing session=%s", obj.get("id"))
        return
    sub_id = obj.get("subscription")
    if not sub_id:
        log.info("event=billing.checkout_without_subscription session=%s", obj.get("id"))
        return
    stripe_sub = stripe.Subscription.retrieve(sub_id)
    tier = _tier_for(session, stripe_sub, (obj.get("metadata") or {}).get("plan_tier"))
    customer_id = obj.get("customer")
    upsert_subscription(session, user, stripe_sub, customer_id, tier)
    user.plan_tier = tier
    if customer_id:
        user.stripe_customer_id = customer_id
    session.add(user)
    session.commit()
    log.info("event=billing.subscription_activated user=%s tier=%s sub=%s", user.id, tier, sub_id)
    notifications.notify_subscription_activated(user.id, plans.load_plan(session, tier)["name"], session=session)


def handle_subscription_updated(session: Session, obj: Dict[str, Any]) -> None:
    row = _subscription_for(session, obj.get("id"), obj.get("customer"))
    if row is None:
        uid = _as_uuid((obj.get("metadata") or {}).get("user_id"))
        user = session.get(User, uid) if uid else None
        if user is None:
            log.warning("event=billing.subscription_unknown sub=%s", obj.get("id"))
            return
        row = upsert_subscription(session, user, obj, obj.get("customer"), _tier_for(session, obj))

    was_cancelling = row.cancel_at_period_end
    start, end = _period_of(obj)
    price_id, _ = _price_of(obj)
    row.status = STATUS_MAP.get(obj.get("status") or "", row.status)
    row.current_period_start = start or row.current_period_start
    row.current_period_end = end or row.current_period_end
    row.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
    if price_id and price_id != row.price_id:
        row.price_id = price_id
        row.plan_tier = _tier_for(session, obj)
    row.updated_at = utcnow()

    user = session.get(User, row.user_id)
    fresh_cancel = row.cancel_at_period_end and (not was_cancelling or row.cancelled_at is None)
    if fresh_cancel:
        row.cancelled_at = utcnow()
        row.scheduled_downgrade_tier = "free"
    elif not row.cancel_at_period_end and was_cancelling:
        row.cancelled_at = None
        row.scheduled_downgrade_tier = None
    if user is not None and row.status in ("active", "trialing"):
        user.plan_tier = row.plan_tier
        session.add(user)
    session.add(row)
    session.commit()
    log.info(
        "event=billing.subscription_updated sub=%s status=%s cancel_at_period_end=%s",
        obj.get("id"), row.status, row.cancel_at_period_end,
    )
    if fresh_cancel:
        notifications.notify_subscription_cancelled(
            row.user_id, plans.load_plan(session, row.plan_tier)["name"], row.current_period_end, session=session,
        )


def handle_subscription_deleted(session: Session, obj: Dict[str, Any]) -> None:
    row = _subscription_for(session, obj.get("id"), obj.get("customer"))
    if row is None:
        log.warning("event=billing.subscription_unknown sub=%s", obj.get("id"))
        return
    row.status = "cancelled"
    row.plan_tier = "free"
    row.cancel_at_period_end = False
    row.cancelled_at = row.cancelled_at or utcnow()
    row.scheduled_downgrade_tier = None
    row.updated_at = utcnow()
    session.add(row)
    user = session.get(User, row.user_id)
    if user is not None:
        user.plan_tier = "free"
        session.add(user)
    session.commit()
    log.info("event=billing.subscription_deleted sub=%s user=%s", obj.get("id"), row.user_id)


def _invoice_subscription_id(obj: Dict[str, Any]) -> Optional[str]:
    if obj.get("subscription"):
        return obj["subscription"]
    details = ((obj.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


def handle_payment_failed(session: Session, obj: Dict[str, Any]) -> None:
    row = _subscription_for(session, _invoice_subscription_id(obj), obj.get("customer"))
    if row is None:
        log.warning("event=billing.invoice_unknown_subscription invoice=%s", obj.get("id"))
        return
    row.status = "past_due"
    row.failed_payment_count = (row.failed_payment_count or 0) + 1
    row.last_payment_failed_at = utcnow()
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    log.warning("event=billing.payment_failed user=%s attempts=%s", row.user_id, row.failed_payment_count)
    notifications.notify_payment_failed(row.user_id, row.failed_payment_count, MAX_PAYMENT_ATTEMPTS, session=session)


def handle_payment_succeeded(session: Session, obj: Dict[str, Any]) -> None:
    row = _subscription_for(session, _invoice_subscription_id(obj), obj.get("customer"))
    if row is None:
        return
    row.status = "active"
    row.failed_payment_count = 0
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    log.info("event=billing.payment_succeeded user=%s", row.user_id)


HANDLERS: Dict[str, Callable[[Session, Dict[str, Any]], None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_payment_failed,
    "invoice.payment_succeeded": handle_payment_succeeded,
}


def dispatch_event(session: Session, event_type: str, obj: Dict[str, Any]) -> bool:
    """Apply ``obj`` for ``event_type``; False when the type is not handled."""
    handler = HANDLERS.get(event_type)
    if handler is None:
        log.debug("event=billing.webhook_ignored type=%s", event_type)
        return False
    handler(session, obj)
    return True
