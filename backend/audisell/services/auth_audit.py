"""Login attempt audit trail and brute-force detection."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, col, select

from audisell.core.clock import utcnow
from audisell.models.usage import UsageAction, UsageLog
from audisell.services.usage import log_usage_event

log = logging.getLogger(__name__)

SUSPICIOUS_WINDOW = timedelta(minutes=15)
SUSPICIOUS_THRESHOLD = 3


def recent_failures(session: Session, email: str, now: Optional[datetime] = None) -> int:
    since = (now or utcnow()) - SUSPICIOUS_WINDOW
    count = session.exec(
        select(func.count()).select_from(UsageLog).where(
            UsageLog.action == UsageAction.AUTH_FAILED.value,
            UsageLog.created_at >= since,
            col(UsageLog.details)["email"].as_string() == email,
        )
    ).one()
    return int(count or 0)


def log_auth_attempt(
    session: Session,
    email: str,
    success: bool,
    ip_address: Optional[str],
    user_id: Optional[UUID] = None,
    reason: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Write ``auth_success``/``auth_failed`` and flag repeated failures for one email."""
    email = (email or "").strip().lower()
    details = {"email": email, "user_agent": (user_agent or "")[:300] or None}
    if success:
        log_usage_event(
            session, UsageAction.AUTH_SUCCESS.value, user_id=user_id, details=details, ip_address=ip_address,
        )
        log.info("event=auth.success user=%s ip=%s", user_id, ip_address)
        return

    log_usage_event(
        session,
        UsageAction.AUTH_FAILED.value,
        user_id=user_id,
        status="failed",
        error_message=reason,
        details=details,
        ip_address=ip_address,
    )
    failures = recent_failures(session, email)
    log.info("event=auth.failed email=%s ip=%s recent_failures=%d", email, ip_address, failures)
    if failures >= SUSPICIOUS_THRESHOLD:
        log.warning("event=auth.suspicious email=%s ip=%s failures=%d", email, ip_address, failures)
        log_usage_event(
            session,
            UsageAction.SUSPICIOUS_AUTH.value,
            user_id=user_id,
            status="warning",
            details={"email": email, "failed_attempts": failures, "window_minutes": 15},
            ip_address=ip_address,
        )
