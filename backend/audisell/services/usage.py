"""Usage accounting: daily quota counters, AI cost rows and the audit log."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, func, select

from audisell.core.clock import utcnow
from audisell.models.usage import ApiName, ApiUsage, DailyUsage, UsageLog

log = logging.getLogger(__name__)

WHISPER_COST_PER_SECOND = 0.006
GEMINI_COST_PER_1K_INPUT = 0.000125
GEMINI_COST_PER_1K_OUTPUT = 0.000375


def whisper_cost(audio_seconds: Optional[float]) -> float:
    return round((audio_seconds or 0.0) * WHISPER_COST_PER_SECOND, 6)


def gemini_cost(tokens_input: Optional[int], tokens_output: Optional[int]) -> float:
    cost = (tokens_input or 0) / 1000 * GEMINI_COST_PER_1K_INPUT
    cost += (tokens_output or 0) / 1000 * GEMINI_COST_PER_1K_OUTPUT
    return round(cost, 6)


def period_start(limit_period: str, today: Optional[date] = None) -> date:
    """First day counted for a plan's limit period."""
    today = today or utcnow().date()
    if limit_period == "weekly":
        return today - timedelta(days=today.weekday())
    if limit_period == "monthly":
        return today.replace(day=1)
    return today


def carousels_used(session: Session, user_id: UUID, since: date, until: Optional[date] = None) -> int:
    stmt = select(func.coalesce(func.sum(DailyUsage.carousels_created), 0)).where(
        DailyUsage.user_id == user_id,
        DailyUsage.date >= since,
    )
    if until is not None:
        stmt = stmt.where(DailyUsage.date <= until)
    return int(session.exec(stmt).one() or 0)


def usage_for_period(session: Session, user_id: UUID, limit_period: str) -> int:
    return carousels_used(session, user_id, period_start(limit_period))


def increment_daily_usage(session: Session, user_id: UUID, amount: int = 1) -> DailyUsage:
    """Add ``amount`` to today's counter, creating the row when missing. Commits."""
    today = utcnow().date()
    row = session.exec(
        select(DailyUsage).where(DailyUsage.user_id == user_id, DailyUsage.date == today)
    ).first()
    if row is None:
        row = DailyUsage(user_id=user_id, date=today, carousels_created=amount)
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            # A concurrent request created today's row first
            session.rollback()
            row = session.exec(
                select(DailyUsage).where(DailyUsage.user_id == user_id, DailyUsage.date == today)
            ).one()
            row.carousels_created += amount
            row.updated_at = utcnow()
            session.add(row)
            session.commit()
    else:
        row.carousels_created += amount
        row.updated_at = utcnow()
        session.add(row)
        session.commit()
    session.refresh(row)
    return row


def record_api_usage(
    session: Session,
    *,
    user_id: Optional[UUID],
    action: str,
    api_name: ApiName,
    carousel_id: Optional[UUID] = None,
    audio_seconds: Optional[float] = None,
    tokens_input: Optional[int] = None,
    tokens_output: Optional[int] = None,
) -> Optional[ApiUsage]:
    """Store one AI call. Accounting failures are logged and never break the caller."""
    if api_name == ApiName.whisper:
        cost = whisper_cost(audio_seconds)
    else:
        cost = gemini_cost(tokens_input, tokens_output)
    row = ApiUsage(
        user_id=user_id,
        carousel_id=carousel_id,
        action=action,
        api_name=api_name,
        audio_seconds=audio_seconds,
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        estimated_cost_usd=cost,
    )
    try:
        session.add(row)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.warning("event=usage.api_record_failed action=%s api=%s err=%s", action, api_name.value, exc)
        return None
    return row


def log_usage_event(
    session: Session,
    action: str,
    *,
    user_id: Optional[UUID] = None,
    status: str = "success",
    error_message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> Optional[UsageLog]:
    row = UsageLog(
        user_id=user_id,
        action=action,
        status=status,
        error_message=error_message,
        details=details,
        ip_address=ip_address,
    )
    try:
        session.add(row)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.warning("event=usage.log_failed action=%s err=%s", action, exc)
        return None
    return row
