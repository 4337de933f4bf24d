import json
import logging

import stripe
from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from audisell.billing.webhooks import dispatch_event
from audisell.core import database
from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.limits import exempt
from audisell.models.stripe_event import StripeEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


def _construct_event(payload: bytes, sig_header: str | None) -> dict:
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        if not settings.is_dev_mode:
            # Refuse unsigned webhooks outside dev (prevents spoofing)
            raise HTTPException(status_code=500, detail="Stripe webhook secret not configured")
        logger.warning("event=billing.webhook_unverified reason=no_secret")
        try:
            return json.loads(payload or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), sig_header or "", secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
        # Handlers work on plain dicts, not StripeObject
        return json.loads(payload)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise HTTPException(status_code=400, detail=f"Webhook error: {e}")


@router.post("/webhook")
@exempt
async def stripe_webhook(request: Request):
    payload = await request.body()
    event = _construct_event(payload, request.headers.get("stripe-signature"))
    event_id = event.get("id")
    kind = event.get("type") or ""
    if not event_id or not kind:
        raise HTTPException(status_code=400, detail="Malformed event")
    obj = (event.get("data") or {}).get("object") or {}

    with database.session_scope() as session:
        existing = session.exec(select(StripeEvent).where(StripeEvent.event_id == event_id)).first()
        if existing is not None and existing.processed:
            logger.info("event=billing.webhook_duplicate id=%s type=%s", event_id, kind)
            return {"received": True, "duplicate": True}
        if existing is not None:
            # An earlier delivery failed; Stripe is retrying it
            logger.info("event=billing.webhook_retry id=%s type=%s last_error=%s", event_id, kind, existing.error_message)
            record = existing
        else:
            record = StripeEvent(event_id=event_id, event_type=kind, payload=dict(obj))
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return {"received": True, "duplicate": True}

        try:
            dispatch_event(session, kind, obj)
        except Exception as e:
            session.rollback()
            logger.exception("event=billing.webhook_failed id=%s type=%s", event_id, kind)
            record = session.get(StripeEvent, record.id)
            record.error_message = str(e)[:1000]
            session.add(record)
            session.commit()
            raise HTTPException(status_code=500, detail="Webhook handler failed")

        record = session.get(StripeEvent, record.id)
        record.processed = True
        record.error_message = None
        record.processed_at = utcnow()
        session.add(record)
        session.commit()
    logger.info("event=billing.webhook_processed id=%s type=%s", event_id, kind)
    return {"received": True}
