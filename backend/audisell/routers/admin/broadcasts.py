from __future__ import annotations

import logging
from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlmodel import Session, col, func, select

from audisell.core.database import get_session
from audisell.models.broadcast import BroadcastCreate, BroadcastJob, BroadcastPublic, BroadcastRecipient
from audisell.models.user import User
from audisell.services.broadcasts import BroadcastError, create_broadcast
from audisell.services.task_dispatcher import dispatcher

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("", response_model=BroadcastPublic, status_code=status.HTTP_201_CREATED)
def send_broadcast(
    payload: BroadcastCreate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    """Create a broadcast to the chosen plans and start delivering it."""
    try:
        job = create_broadcast(
            session,
            title=payload.title,
            body=payload.body,
            kind=payload.kind,
            target_plans=payload.target_plans,
            target_all_users=payload.target_all_users,
            email_subject=payload.email_subject,
            created_by=admin_user.id,
        )
    except BroadcastError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if job.total_recipients:
        mode = dispatcher.dispatch_broadcast(job.id, background_tasks)
        log.info("event=broadcast.dispatched job=%s mode=%s admin=%s", job.id, mode, admin_user.id)
    session.refresh(job)
    return job


@router.get("", response_model=List[BroadcastPublic])
def list_broadcasts(
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    del admin_user
    return session.exec(select(BroadcastJob).order_by(col(BroadcastJob.created_at).desc()).limit(limit)).all()


@router.get("/{job_id}")
def get_broadcast(
    job_id: UUID,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> Dict[str, Any]:
    del admin_user
    job = session.get(BroadcastJob, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Broadcast not found")
    counts = session.exec(
        select(BroadcastRecipient.status, func.count())
        .where(BroadcastRecipient.job_id == job.id)
        .group_by(BroadcastRecipient.status)
    ).all()
    failures = session.exec(
        select(BroadcastRecipient)
        .where(BroadcastRecipient.job_id == job.id, BroadcastRecipient.status == "failed")
        .limit(50)
    ).all()
    return {
        "job": BroadcastPublic.model_validate(job).model_dump(mode="json"),
        "recipients": {s: n for s, n in counts},
        "failures": [{"email": r.email, "error": r.error_message} for r in failures],
    }
