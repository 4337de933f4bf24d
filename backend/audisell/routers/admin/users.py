from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from audisell.billing import plans
from audisell.core.auth import get_user_role
from audisell.core.database import get_session
from audisell.models.carousel import Carousel
from audisell.models.user import User

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


class UserAdminOut(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    email_verified: bool
    plan_tier: str
    carousel_count: int = 0
    created_at: datetime
    last_login_at: Optional[datetime] = None


class UserPage(BaseModel):
    items: List[UserAdminOut]
    total: int
    page: int
    per_page: int


class UserAdminUpdate(BaseModel):
    role: Optional[Literal["user", "admin", "superadmin"]] = None
    is_active: Optional[bool] = None
    plan_tier: Optional[str] = None


def _out(user: User, carousel_count: int) -> UserAdminOut:
    return UserAdminOut(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=get_user_role(user),
        is_active=user.is_active,
        email_verified=user.email_verified,
        plan_tier=user.plan_tier,
        carousel_count=carousel_count,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )


def _carousel_counts(session: Session, user_ids: List[UUID]) -> dict:
    if not user_ids:
        return {}
    rows = session.exec(
        select(Carousel.user_id, func.count(Carousel.id))
        .where(col(Carousel.user_id).in_(user_ids))
        .group_by(Carousel.user_id)
    ).all()
    return {uid: count for uid, count in rows}


@router.get("", response_model=UserPage)
def list_users(
    search: Optional[str] = Query(default=None, max_length=120),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=100),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    """Users newest first, optionally filtered by email or name."""
    del admin_user
    stmt = select(User)
    count_stmt = select(func.count(User.id))
    if search:
        pattern = f"%{search.strip().lower()}%"
        cond = or_(func.lower(User.email).like(pattern), func.lower(User.full_name).like(pattern))
        stmt = stmt.where(cond)
        count_stmt = count_stmt.where(cond)
    total = session.exec(count_stmt).one()
    users = session.exec(
        stmt.order_by(col(User.created_at).desc()).offset((page - 1) * per_page).limit(per_page)
    ).all()
    counts = _carousel_counts(session, [u.id for u in users])
    return UserPage(
        items=[_out(u, counts.get(u.id, 0)) for u in users],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.patch("/{user_id}", response_model=UserAdminOut)
def update_user(
    user_id: UUID,
    update: UserAdminUpdate,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    """Change role, active flag or plan tier. Granting or removing superadmin needs a superadmin."""
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    if update.role is not None:
        touches_superadmin = update.role == "superadmin" or get_user_role(user) == "superadmin"
        if touches_superadmin and get_user_role(admin_user) != "superadmin":
            raise HTTPException(status_code=403, detail="This action requires superadmin privileges.")
        user.role = None if update.role == "user" else update.role
        user.is_admin = update.role in ("admin", "superadmin")
    if update.is_active is not None:
        if user.id == admin_user.id and not update.is_active:
            raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
        user.is_active = update.is_active
    if update.plan_tier is not None:
        tier = update.plan_tier.strip().lower()
        if tier not in plans.PLANS:
            raise HTTPException(status_code=400, detail=f"Unknown plan tier: {update.plan_tier}")
        user.plan_tier = tier

    session.add(user)
    session.commit()
    session.refresh(user)
    log.info(
        "event=admin.user_updated admin=%s user=%s fields=%s",
        admin_user.id, user.id, sorted(update.model_dump(exclude_none=True)),
    )
    count = session.exec(select(func.count(Carousel.id)).where(Carousel.user_id == user.id)).one()
    return _out(user, count)
