"""Notification tasks: admin broadcasts and the daily scheduled pass."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from audisell.core import database
from audisell.services.broadcasts import run_broadcast
from audisell.services.notifications import send_scheduled_notifications as _send_scheduled

from .app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(name="notifications.process_broadcast")
def process_broadcast(job_id: str) -> Optional[str]:
    log.info("[worker] notifications.process_broadcast start job=%s", job_id)
    status = run_broadcast(job_id)
    log.info("[worker] notifications.process_broadcast done job=%s status=%s", job_id, status)
    return status


@celery_app.task(name="notifications.send_scheduled")
def send_scheduled_notifications() -> Dict[str, int]:
    with database.session_scope() as session:
        return _send_scheduled(session)
