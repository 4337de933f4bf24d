"""Admin broadcasts: one announcement fanned out to every user on the targeted plans.

Creating a job snapshots its recipients; processing walks the pending rows in
batches so a worker restart resumes where it stopped.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlmodel import Session, col, select

from audisell.billing import plans
from audisell.core import database
from audisell.core.clock import as_utc, utcnow
from audisell.models.broadcast import BroadcastJob, BroadcastKind, BroadcastRecipient, BroadcastStatus
from audisell.models.notification import Notification, NotificationType
from audisell.models.subscription import ManualSubscription, Subscription
from audisell.models.user import User
from audisell.services.mailer import Mailer, mailer as default_mailer
from audisell.services.subscriptions import ACTIVE_STATUSES

log = logging.getLogger(__name__)

BATCH_SIZE = 50


class BroadcastError(ValueError):
    pass


def current_tiers(session: Session, now: Optional[datetime] = None) -> Dict[UUID, str]:
    """Paid tier per user id. Users missing from the map are on the free plan."""
    now = as_utc(now or utcnow())
    tiers: Dict[UUID, str] = {}
    for sub in session.exec(select(Subscription)).all():
        in_period = sub.current_period_end is not None and as_utc(sub.current_period_end) > now
        if in_period and sub.status in (*ACTIVE_STATUSES, "cancelled", "canceled") and plans.is_paid_plan(sub.plan_tier):
            tiers[sub.user_id] = sub.plan_tier
    # Manual grants win over Stripe, same as resolve_subscription
    manual_rows = session.exec(
        select(ManualSubscription).where(ManualSubscription.is_active == True)  # noqa: E712
    ).all()
    for row in manual_rows:
        if row.expires_at is None or as_utc(row.expires_at) > now:
            tiers[row.user_id] = plans.normalize_tier(row.plan_tier)
    return tiers


def resolve_recipients(
    session: Session,
    target_plans: Iterable[str],
    target_all_users: bool = False,
    now: Optional[datetime] = None,
) -> List[User]:
    users = session.exec(
        select(User).where(User.is_active == True).order_by(User.created_at)  # noqa: E712
    ).all()
    if target_all_users:
        return list(users)
    wanted = {plans.normalize_tier(p) for p in target_plans}
    tiers = current_tiers(session, now)
    return [u for u in users if tiers.get(u.id, "free") in wanted]


def create_broadcast(
    session: Session,
    *,
    title: str,
    body: str,
    kind: BroadcastKind = BroadcastKind.notification,
    target_plans: Optional[List[str]] = None,
    target_all_users: bool = False,
    email_subject: Optional[str] = None,
    created_by: Optional[UUID] = None,
) -> BroadcastJob:
    """Validate, snapshot the recipients and persist a pending job."""
    target_plans = [p.strip().lower() for p in (target_plans or []) if p and p.strip()]
    unknown = sorted(set(target_plans) - set(plans.PLAN_ORDER))
    if unknown:
        raise BroadcastError(f"Unknown plan(s): {', '.join(unknown)}")
    if not target_all_users and not target_plans:
        raise BroadcastError("Choose at least one plan or target all users")

    recipients = resolve_recipients(session, target_plans, target_all_users)
    job = BroadcastJob(
        kind=kind.value,
        title=title.strip(),
        body=body.strip(),
        email_subject=(email_subject or "").strip() or None,
        target_plans=target_plans,
        target_all_users=target_all_users,
        total_recipients=len(recipients),
        created_by=created_by,
    )
    if not recipients:
        job.status = BroadcastStatus.completed.value
        job.completed_at = utcnow()
    session.add(job)
    session.flush()
    for user in recipients:
        session.add(BroadcastRecipient(job_id=job.id, user_id=user.id, email=user.email))
    session.commit()
    session.refresh(job)
    log.info(
        "event=broadcast.created job=%s kind=%s plans=%s all=%s recipients=%d",
        job.id, job.kind, target_plans, target_all_users, job.total_recipients,
    )
    return job


def _deliver(job: BroadcastJob, recipient: BroadcastRecipient, session: Session, mail: Mailer) -> Optional[str]:
    """Error message, or None when the recipient was reached."""
    if job.kind == BroadcastKind.email.value:
        if mail.send(recipient.email, job.email_subject or job.title, job.body):
            return None
        return "SMTP rejected the message"
    session.add(Notification(
        user_id=recipient.user_id,
        type=NotificationType.announcement.value,
        title=job.title,
        body=job.body,
    ))
    return None


def process_batch(
    session: Session,
    job_id: UUID,
    batch_size: int = BATCH_SIZE,
    mail: Optional[Mailer] = None,
) -> BroadcastJob:
    """Deliver up to ``batch_size`` pending recipients; completes the job when none are left."""
    job = session.get(BroadcastJob, job_id)
    if job is None:
        raise BroadcastError(f"Broadcast {job_id} not found")
    if job.status == BroadcastStatus.completed.value:
        return job
    mail = mail or default_mailer

    if job.status == BroadcastStatus.pending.value:
        job.status = BroadcastStatus.processing.value
        job.started_at = utcnow()

    batch = session.exec(
        select(BroadcastRecipient)
        .where(BroadcastRecipient.job_id == job.id, BroadcastRecipient.status == "pending")
        .order_by(col(BroadcastRecipient.id))
        .limit(batch_size)
    ).all()
    for recipient in batch:
        error = _deliver(job, recipient, session, mail)
        recipient.sent_at = utcnow()
        if error is None:
            recipient.status = "sent"
            job.success_count += 1
        else:
            recipient.status = "failed"
            recipient.error_message = error[:500]
            job.failed_count += 1
        session.add(recipient)

    if len(batch) < batch_size:
        job.status = BroadcastStatus.completed.value
        job.completed_at = utcnow()
    session.add(job)
    session.commit()
    session.refresh(job)
    log.info(
        "event=broadcast.batch job=%s processed=%d/%d failed=%d status=%s",
        job.id, job.processed_count, job.total_recipients, job.failed_count, job.status,
    )
    return job


def run_broadcast(job_id: UUID | str, batch_size: int = BATCH_SIZE, mail: Optional[Mailer] = None) -> Optional[str]:
    """Process every batch of a job in its own session. Returns the final status."""
    with database.session_scope() as session:
        job = process_batch(session, UUID(str(job_id)), batch_size, mail)
        while job.status != BroadcastStatus.completed.value:
            job = process_batch(session, job.id, batch_size, mail)
        return job.status
