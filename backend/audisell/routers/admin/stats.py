from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from audisell.core.database import get_session
from audisell.models.user import User
from audisell.services import admin_stats

from .deps import get_current_admin_user

log = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stats")
def admin_stats_overview(
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> Dict[str, Any]:
    del admin_user
    return admin_stats.overview(session)


@router.get("/metrics")
def admin_metrics(
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> Dict[str, Any]:
    """Daily signups and carousels for the last 30 days (zero-filled)."""
    del admin_user
    return admin_stats.daily_metrics(session, days=30)


@router.get("/api-usage")
def admin_api_usage(
    period: str = Query(default="today"),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> Dict[str, Any]:
    del admin_user
    try:
        return admin_stats.api_usage(session, period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/revenue")
def admin_revenue(
    period: str = Query(default="30d"),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> Dict[str, Any]:
    del admin_user
    try:
        return admin_stats.revenue(session, period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
