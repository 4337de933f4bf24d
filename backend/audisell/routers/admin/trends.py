from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, col, select

from audisell.core.database import get_session
from audisell.models.settings import load_feature_flags
from audisell.models.trend_report import TrendReport
from audisell.models.user import User
from audisell.services.trends import TrendAnalysisError, analyze_trends

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


class AnalyzeRequest(BaseModel):
    period_days: int = 7


@router.post("/analyze", response_model=TrendReport)
def run_trend_analysis(
    payload: AnalyzeRequest,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    if not load_feature_flags(session).trends_enabled:
        raise HTTPException(status_code=403, detail="Trend analysis is disabled")
    try:
        return analyze_trends(session, payload.period_days, created_by=admin_user.id)
    except TrendAnalysisError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RuntimeError as exc:
        log.warning("event=trends.failed admin=%s error=%s", admin_user.id, exc)
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("", response_model=List[TrendReport])
def list_trend_reports(
    period_days: int | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    del admin_user
    stmt = select(TrendReport).order_by(col(TrendReport.created_at).desc()).limit(limit)
    if period_days is not None:
        stmt = stmt.where(TrendReport.period_days == period_days)
    return session.exec(stmt).all()
