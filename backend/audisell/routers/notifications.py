from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, col, select

from audisell.core.auth import get_current_user
from audisell.core.clock import utcnow
from audisell.core.database import get_session
from audisell.models.notification import Notification, NotificationPublic
from audisell.models.user import User

router = APIRouter(prefix="/notifications", tags=["Notifications"])

LIST_LIMIT = 50


@router.get("", response_model=List[NotificationPublic])
def list_notifications(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Latest notifications, newest first."""
    q = (
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(col(Notification.created_at).desc())
        .limit(LIST_LIMIT)
    )
    return session.exec(q).all()


@router.post("/{notification_id}/read")
def mark_read(notification_id: UUID, current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    note = session.get(Notification, notification_id)
    if not note or note.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Not found")
    already_read = note.read_at is not None
    if not already_read:
        note.read_at = utcnow()
        session.add(note)
        session.commit()
    return {"ok": True, "id": str(note.id), "already_read": already_read}


@router.post("/read-all")
def mark_all_read(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    q = select(Notification).where(Notification.user_id == current_user.id, Notification.read_at == None)  # noqa: E711
    rows = session.exec(q).all()
    now = utcnow()
    for r in rows:
        r.read_at = now
        session.add(r)
    if rows:
        session.commit()
    return {"updated": len(rows)}
