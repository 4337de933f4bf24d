from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from audisell.core.database import get_session
from audisell.models.user import User
from audisell.services.cleanup import cleanup_old_images
from audisell.services.notifications import send_scheduled_notifications

from .deps import get_admin_or_service

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/cleanup-images")
def run_image_cleanup(
    retention_days: Optional[int] = Query(default=None, ge=1, le=3650),
    session: Session = Depends(get_session),
    caller: Optional[User] = Depends(get_admin_or_service),
) -> Dict[str, Any]:
    """Delete slide files of carousels past the retention window. Also called by the scheduler."""
    log.info("[cleanup] triggered by %s", caller.email if caller is not None else "service-token")
    return cleanup_old_images(session, retention_days=retention_days)


@router.post("/notifications/run-scheduled")
def run_scheduled_notifications(
    session: Session = Depends(get_session),
    caller: Optional[User] = Depends(get_admin_or_service),
) -> Dict[str, int]:
    """Same daily pass the worker beat runs; deduplicated, so safe to repeat."""
    log.info("[notification] scheduled pass triggered by %s", caller.email if caller is not None else "service-token")
    return send_scheduled_notifications(session)
