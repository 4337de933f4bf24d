import logging
from typing import Literal, Optional
from urllib.parse import urlencode

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from audisell.billing import plans
from audisell.billing.webhooks import ACTIVE_STRIPE_STATUSES
from audisell.core.auth import get_current_user
from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.models.plan_config import PlanConfig
from audisell.models.subscription import Subscription
from audisell.models.user import User
from audisell.services import notifications

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY

router = APIRouter(prefix="/billing", tags=["Billing"])

RETENTION_COUPON_ID = "RETENTION_50_OFF"


class CheckoutRequest(BaseModel):
    plan_tier: Literal["starter", "creator", "agency"]
    currency: Literal["brl", "usd", "eur"] = "brl"


class CheckoutResponse(BaseModel):
    url: str
    session_id: Optional[str] = None


class PortalResponse(BaseModel):
    url: str


def _require_stripe():
    if not stripe.api_key:
        raise HTTPException(status_code=500, detail="Stripe not configured")


def _ensure_customer(user: User, session: Session) -> str:
    """Ensure user has a Stripe customer ID, creating one if needed."""
    if user.stripe_customer_id:
        return user.stripe_customer_id
    try:
        cust = stripe.Customer.create(email=user.email, metadata={"user_id": str(user.id)})
    except stripe.StripeError as e:
        logger.error("event=billing.customer_create_failed user_id=%s error=%s", user.id, e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create Stripe customer: {e}")
    user.stripe_customer_id = cust["id"]
    session.add(user)
    session.commit()
    return user.stripe_customer_id


def _plan_row(session: Session, tier: str) -> Optional[PlanConfig]:
    return session.exec(select(PlanConfig).where(PlanConfig.tier == tier)).first()


def _find_existing_price(product_name: str, amount: int, currency: str) -> Optional[str]:
    prices = stripe.Price.list(active=True, currency=currency, type="recurring", limit=100, expand=["data.product"])
    for price in prices.get("data", []):
        recurring = price.get("recurring") or {}
        product = price.get("product") or {}
        name = product.get("name") if isinstance(product, dict) else None
        if price.get("unit_amount") == amount and recurring.get("interval") == "month" and name == product_name:
            return price["id"]
    return None


def _resolve_price_id(session: Session, tier: str, currency: str, row: Optional[PlanConfig]) -> str:
    """Configured price id, else a matching active monthly price, else a freshly created one."""
    configured = getattr(row, f"stripe_price_id_{currency}", None) if row is not None else None
    if not configured and currency == "brl":
        configured = plans.STRIPE_PRICE_IDS.get(tier)
    if configured:
        return configured

    amount = plans.checkout_amount(tier, currency, row)
    product_name = f"Audisell {row.name if row is not None else plans.get_plan(tier)['name']}"
    price_id = _find_existing_price(product_name, amount, currency)
    if price_id is None:
        product = stripe.Product.create(name=product_name, metadata={"plan_tier": tier})
        price = stripe.Price.create(
            product=product["id"],
            unit_amount=amount,
            currency=currency,
            recurring={"interval": "month"},
            metadata={"plan_tier": tier},
        )
        price_id = price["id"]
        logger.info("event=billing.price_created tier=%s currency=%s amount=%s price=%s", tier, currency, amount, price_id)
    if row is not None:
        setattr(row, f"stripe_price_id_{currency}", price_id)
        row.updated_at = utcnow()
        session.add(row)
        session.commit()
    return price_id


@router.post("/checkout", response_model=CheckoutResponse, dependencies=[Depends(rate_limited("checkout"))])
async def create_checkout_session(
    req: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    row = _plan_row(session, req.plan_tier)
    if row is not None and not row.is_active:
        raise HTTPException(status_code=400, detail="Plan is not available")

    link = getattr(row, f"checkout_link_{req.currency}", None) if row is not None else None
    if link:
        query = urlencode({"prefilled_email": current_user.email, "client_reference_id": str(current_user.id)})
        separator = "&" if "?" in link else "?"
        return CheckoutResponse(url=f"{link}{separator}{query}")

    _require_stripe()
    try:
        customer_id = _ensure_customer(current_user, session)
        price_id = _resolve_price_id(session, req.plan_tier, req.currency, row)
        metadata = {"plan_tier": req.plan_tier, "user_id": str(current_user.id)}
        checkout = stripe.checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.APP_BASE_URL}/dashboard?subscription=success",
            cancel_url=f"{settings.APP_BASE_URL}/dashboard?subscription=canceled",
            client_reference_id=str(current_user.id),
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
    except stripe.StripeError as e:
        logger.error("event=billing.checkout_failed user_id=%s tier=%s error=%s", current_user.id, req.plan_tier, e)
        raise HTTPException(status_code=500, detail=f"Stripe error: {e}")
    logger.info("event=billing.checkout_created user_id=%s tier=%s currency=%s", current_user.id, req.plan_tier, req.currency)
    return CheckoutResponse(url=checkout["url"], session_id=checkout["id"])


@router.post("/portal", response_model=PortalResponse)
async def create_billing_portal(current_user: User = Depends(get_current_user)):
    _require_stripe()
    if not current_user.stripe_customer_id:
        raise HTTPException(status_code=404, detail="No billing account found")
    try:
        portal_session = stripe.billing_portal.Session.create(
            customer=current_user.stripe_customer_id,
            return_url=f"{settings.APP_BASE_URL}/dashboard",
        )
    except stripe.StripeError as e:
        raise HTTPException(status_code=500, detail=f"Stripe error: {e}")
    return PortalResponse(url=portal_session["url"])


def _active_stripe_subscription(session: Session, user: User) -> Subscription:
    sub = session.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if sub is None or not sub.stripe_subscription_id or sub.status not in ACTIVE_STRIPE_STATUSES:
        raise HTTPException(status_code=404, detail="No active subscription found")
    return sub


def _retention_coupon():
    try:
        return stripe.Coupon.retrieve(RETENTION_COUPON_ID)
    except stripe.InvalidRequestError:
        return stripe.Coupon.create(
            id=RETENTION_COUPON_ID,
            percent_off=50,
            duration="once",
            name="50% off next invoice",
        )


@router.post("/retention-offer")
async def apply_retention_offer(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """One-time 50% discount offered instead of cancelling."""
    if current_user.retention_offer_used_at is not None:
        raise HTTPException(status_code=409, detail="Retention offer already used")
    _require_stripe()
    sub = _active_stripe_subscription(session, current_user)
    try:
        coupon = _retention_coupon()
        stripe.Subscription.modify(
            sub.stripe_subscription_id,
            discounts=[{"coupon": coupon["id"]}],
            cancel_at_period_end=False,
        )
    except stripe.StripeError as e:
        logger.error("event=billing.retention_failed user_id=%s error=%s", current_user.id, e)
        raise HTTPException(status_code=500, detail=f"Stripe error: {e}")

    now = utcnow()
    sub.cancel_at_period_end = False
    sub.cancelled_at = None
    sub.scheduled_downgrade_tier = None
    sub.updated_at = now
    current_user.retention_offer_used_at = now
    session.add(sub)
    session.add(current_user)
    session.commit()
    logger.info("event=billing.retention_applied user_id=%s sub=%s", current_user.id, sub.stripe_subscription_id)
    return {"success": True, "discount_percent": 50}


@router.post("/cancel")
async def cancel_subscription(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    _require_stripe()
    sub = _active_stripe_subscription(session, current_user)
    try:
        stripe.Subscription.modify(sub.stripe_subscription_id, cancel_at_period_end=True)
    except stripe.StripeError as e:
        raise HTTPException(status_code=500, detail=f"Stripe error: {e}")
    now = utcnow()
    sub.cancel_at_period_end = True
    sub.cancelled_at = now
    sub.scheduled_downgrade_tier = "free"
    sub.updated_at = now
    session.add(sub)
    session.commit()
    notifications.notify_subscription_cancelled(
        current_user.id, plans.load_plan(session, sub.plan_tier)["name"], sub.current_period_end, session=session, now=now,
    )
    logger.info("event=billing.cancel_scheduled user_id=%s sub=%s", current_user.id, sub.stripe_subscription_id)
    return {"success": True, "cancel_at_period_end": True, "current_period_end": sub.current_period_end}
