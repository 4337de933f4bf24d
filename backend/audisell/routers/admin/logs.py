from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, col, select

from audisell.core.database import get_session
from audisell.models.stripe_event import StripeEvent
from audisell.models.usage import UsageLog
from audisell.models.user import User

from .deps import get_current_admin_user

router = APIRouter()


@router.get("/stripe-events", response_model=List[StripeEvent])
def list_stripe_events(
    event_type: Optional[str] = Query(default=None),
    failed_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    del admin_user
    stmt = select(StripeEvent).order_by(col(StripeEvent.created_at).desc()).limit(limit)
    if event_type:
        stmt = stmt.where(StripeEvent.event_type == event_type)
    if failed_only:
        stmt = stmt.where(col(StripeEvent.error_message).is_not(None))
    return session.exec(stmt).all()


@router.get("/usage-logs", response_model=List[UsageLog])
def list_usage_logs(
    action: Optional[str] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    del admin_user
    stmt = select(UsageLog).order_by(col(UsageLog.created_at).desc()).limit(limit)
    if action:
        stmt = stmt.where(UsageLog.action == action)
    if user_id is not None:
        stmt = stmt.where(UsageLog.user_id == user_id)
    return session.exec(stmt).all()
