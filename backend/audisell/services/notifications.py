from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from audisell.core import database
from audisell.core.clock import as_utc, utcnow
from audisell.models.notification import Notification, NotificationType
from audisell.models.subscription import ManualSubscription, Subscription
from audisell.models.usage import DailyUsage
from audisell.models.user import User

log = logging.getLogger(__name__)


def create_notification(
    user_id: Any,
    title: str,
    body: Optional[str] = None,
    type: NotificationType = NotificationType.info,
    session: Optional[Session] = None,
    carousel_id: Any = None,
) -> Optional[Notification]:
    """Persist a notification. Failures are logged; callers never depend on delivery."""
    note = Notification(user_id=user_id, type=type.value, title=title, body=body, carousel_id=carousel_id)
    try:
        if session is not None:
            session.add(note)
            session.commit()
        else:
            with database.session_scope() as own:
                own.add(note)
                own.commit()
    except SQLAlchemyError:
        log.warning("[notification] Failed to create notification type=%s user=%s", type.value, user_id, exc_info=True)
        if session is not None:
            session.rollback()
        return None
    return note


def notify_carousel_ready(user_id: Any, carousel_id: Any, slide_count: int) -> None:
    create_notification(
        user_id,
        title="Carrossel pronto / Carousel ready",
        body=f"Seu carrossel com {slide_count} slides está pronto. Your {slide_count}-slide carousel is ready.",
        type=NotificationType.carousel_ready,
        carousel_id=carousel_id,
    )


def notify_carousel_failed(user_id: Any, carousel_id: Any, error_message: Optional[str] = None) -> None:
    trimmed = (error_message or "").strip()[:200]
    body = "Não foi possível gerar seu carrossel. We could not generate your carousel."
    if trimmed:
        body = f"{body} ({trimmed})"
    create_notification(
        user_id,
        title="Falha no carrossel / Carousel failed",
        body=body,
        type=NotificationType.carousel_failed,
        carousel_id=carousel_id,
    )


def notify_subscription_activated(user_id: Any, plan_name: str, session: Optional[Session] = None) -> None:
    create_notification(
        user_id,
        title="Assinatura ativada / Subscription activated",
        body=f"Seu plano {plan_name} está ativo. Your {plan_name} plan is active.",
        type=NotificationType.subscription,
        session=session,
    )


def notify_subscription_cancelled(
    user_id: Any,
    plan_name: str,
    period_end: Optional[datetime],
    session: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> int:
    """Bilingual cancellation notice with the days left on the paid period. Returns the days."""
    now = as_utc(now or utcnow())
    days_left = max(0, (as_utc(period_end) - now).days) if period_end else 0
    create_notification(
        user_id,
        title="Assinatura cancelada / Subscription cancelled",
        body=(
            f"Seu plano {plan_name} continua ativo por mais {days_left} dia(s); depois você volta ao plano gratuito. "
            f"Your {plan_name} plan stays active for {days_left} more day(s), then you move to the free plan."
        ),
        type=NotificationType.subscription_cancelled,
        session=session,
    )
    return days_left


def notify_payment_failed(
    user_id: Any,
    failed_count: int,
    max_attempts: int = 3,
    session: Optional[Session] = None,
) -> None:
    if failed_count >= max_attempts:
        create_notification(
            user_id,
            title="Pagamento recusado / Payment declined",
            body=(
                "Não conseguimos cobrar sua assinatura após várias tentativas. Atualize seu cartão para não perder o acesso. "
                "We could not charge your subscription after several attempts. Update your card to keep access."
            ),
            type=NotificationType.payment_failed_final,
            session=session,
        )
        return
    left = max_attempts - failed_count
    create_notification(
        user_id,
        title="Falha no pagamento / Payment failed",
        body=(
            f"O pagamento falhou. Tentaremos novamente ({left} tentativa(s) restante(s)). "
            f"Your payment failed. We will retry ({left} attempt(s) left)."
        ),
        type=NotificationType.payment_failed,
        session=session,
    )


# --- Scheduled (daily beat) ---------------------------------------------------

REENGAGE_AFTER_DAYS = 7
REENGAGE_WINDOW_DAYS = 30
EXPIRING_WITHIN_DAYS = 3


def _recently_notified(session: Session, user_id: Any, type: NotificationType, since: datetime) -> bool:
    row = session.exec(
        select(Notification.id).where(
            Notification.user_id == user_id,
            Notification.type == type.value,
            Notification.created_at >= since,
        )
    ).first()
    return row is not None


def _send_daily_summaries(session: Session, now: datetime) -> int:
    today_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    yesterday = now.date() - timedelta(days=1)
    rows = session.exec(
        select(DailyUsage).where(DailyUsage.date == yesterday, DailyUsage.carousels_created > 0)
    ).all()
    sent = 0
    for row in rows:
        if _recently_notified(session, row.user_id, NotificationType.daily_summary, today_start):
            continue
        n = row.carousels_created
        session.add(Notification(
            user_id=row.user_id,
            type=NotificationType.daily_summary.value,
            title="Resumo de ontem / Yesterday's summary",
            body=f"Ontem você criou {n} carrossel(is). Yesterday you created {n} carousel(s).",
        ))
        sent += 1
    return sent


def _send_re_engagement(session: Session, now: datetime) -> int:
    """Users who signed up in the last 30 days but have not been back for a week."""
    idle_since = now - timedelta(days=REENGAGE_AFTER_DAYS)
    users = session.exec(
        select(User).where(
            User.is_active == True,  # noqa: E712
            User.created_at >= now - timedelta(days=REENGAGE_WINDOW_DAYS),
        )
    ).all()
    sent = 0
    for user in users:
        last_seen = as_utc(user.last_login_at or user.created_at)
        if last_seen >= idle_since:
            continue
        if _recently_notified(session, user.id, NotificationType.re_engagement, idle_since):
            continue
        session.add(Notification(
            user_id=user.id,
            type=NotificationType.re_engagement.value,
            title="Sentimos sua falta / We miss you",
            body=(
                "Grave um áudio e transforme em um carrossel novo hoje. "
                "Record a voice note and turn it into a fresh carousel today."
            ),
        ))
        sent += 1
    return sent


def _send_expiring(session: Session, now: datetime) -> int:
    """Cancelled Stripe subscriptions and manual grants that end within three days."""
    horizon = now + timedelta(days=EXPIRING_WITHIN_DAYS)
    ending: dict = {}
    for sub in session.exec(select(Subscription).where(col(Subscription.current_period_end).is_not(None))).all():
        cancelling = sub.cancel_at_period_end or sub.status in ("cancelled", "canceled")
        if cancelling and now < as_utc(sub.current_period_end) <= horizon:
            ending[sub.user_id] = as_utc(sub.current_period_end)
    manual_rows = session.exec(
        select(ManualSubscription).where(
            ManualSubscription.is_active == True,  # noqa: E712
            col(ManualSubscription.expires_at).is_not(None),
        )
    ).all()
    for row in manual_rows:
        if now < as_utc(row.expires_at) <= horizon:
            ending[row.user_id] = as_utc(row.expires_at)

    sent = 0
    for user_id, ends_at in ending.items():
        if _recently_notified(session, user_id, NotificationType.subscription_expiring, now - timedelta(days=EXPIRING_WITHIN_DAYS)):
            continue
        days_left = max(0, (ends_at - now).days)
        session.add(Notification(
            user_id=user_id,
            type=NotificationType.subscription_expiring.value,
            title="Seu plano está acabando / Your plan is ending",
            body=(
                f"Seu plano termina em {days_left} dia(s). Renove para manter seus recursos. "
                f"Your plan ends in {days_left} day(s). Renew to keep your features."
            ),
        ))
        sent += 1
    return sent


def send_scheduled_notifications(session: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """Daily pass: usage summaries, re-engagement nudges and expiring-plan warnings.

    Each kind is deduplicated against notifications already sent, so running
    it twice on the same day sends nothing new.
    """
    now = as_utc(now or utcnow())
    summary = {
        "daily_summary": _send_daily_summaries(session, now),
        "re_engagement": _send_re_engagement(session, now),
        "subscription_expiring": _send_expiring(session, now),
    }
    session.commit()
    log.info(
        "[notification] scheduled pass daily_summary=%d re_engagement=%d expiring=%d",
        summary["daily_summary"], summary["re_engagement"], summary["subscription_expiring"],
    )
    return summary
