from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session, col, select

from audisell.billing import plans
from audisell.core import crud
from audisell.core.clock import utcnow
from audisell.core.database import get_session
from audisell.models.subscription import ManualSubscription
from audisell.models.user import User
from audisell.services import notifications

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


class ManualGrantRequest(BaseModel):
    user_id: Optional[UUID] = None
    email: Optional[EmailStr] = None
    plan_tier: str
    custom_daily_limit: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = Field(default=None, max_length=300)
    duration_days: Optional[int] = Field(default=None, ge=1, le=3650)


@router.get("", response_model=List[ManualSubscription])
def list_manual_subscriptions(
    active_only: bool = Query(default=False),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    del admin_user
    stmt = select(ManualSubscription).order_by(col(ManualSubscription.created_at).desc())
    if active_only:
        stmt = stmt.where(ManualSubscription.is_active == True)  # noqa: E712
    return session.exec(stmt).all()


@router.post("", response_model=ManualSubscription, status_code=201)
def grant_manual_subscription(
    payload: ManualGrantRequest,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    """Grant plan access outside Stripe; replaces any active grant for the user."""
    tier = payload.plan_tier.strip().lower()
    if not plans.is_paid_plan(tier):
        raise HTTPException(status_code=400, detail=f"Unknown paid plan tier: {payload.plan_tier}")
    user = None
    if payload.user_id is not None:
        user = session.get(User, payload.user_id)
    elif payload.email:
        user = crud.get_user_by_email(session, payload.email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    previous = session.exec(
        select(ManualSubscription).where(
            ManualSubscription.user_id == user.id,
            ManualSubscription.is_active == True,  # noqa: E712
        )
    ).all()
    for row in previous:
        row.is_active = False
        session.add(row)

    expires_at = utcnow() + timedelta(days=payload.duration_days) if payload.duration_days else None
    grant = ManualSubscription(
        user_id=user.id,
        plan_tier=tier,
        custom_daily_limit=payload.custom_daily_limit,
        reason=payload.reason,
        granted_by=admin_user.id,
        expires_at=expires_at,
    )
    session.add(grant)
    session.commit()
    session.refresh(grant)
    log.info("event=admin.manual_grant admin=%s user=%s tier=%s expires=%s", admin_user.id, user.id, tier, expires_at)
    notifications.notify_subscription_activated(user.id, plans.load_plan(session, tier)["name"], session=session)
    return grant


@router.delete("/{grant_id}")
def revoke_manual_subscription(
    grant_id: UUID,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    grant = session.get(ManualSubscription, grant_id)
    if grant is None:
        raise HTTPException(status_code=404, detail="Manual subscription not found")
    grant.is_active = False
    session.add(grant)
    session.commit()
    log.info("event=admin.manual_revoke admin=%s grant=%s user=%s", admin_user.id, grant.id, grant.user_id)
    return {"ok": True, "id": str(grant.id), "is_active": False}
