"""Scheduled maintenance tasks (see BEAT_SCHEDULE in app.py)."""
from __future__ import annotations

import logging
from typing import Any, Dict

from audisell.core import database
from audisell.services.cleanup import cleanup_old_images as _cleanup_old_images
from audisell.startup_tasks import fail_stale_carousels as _fail_stale_carousels

from .app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(name="maintenance.cleanup_old_images")
def cleanup_old_images() -> Dict[str, Any]:
    with database.session_scope() as session:
        summary = _cleanup_old_images(session)
    log.info(
        "[worker] cleanup_old_images carousels=%s files=%s errors=%s",
        summary["carousels_cleaned"], summary["files_deleted"], summary["errors"],
    )
    return summary


@celery_app.task(name="maintenance.fail_stale_carousels")
def fail_stale_carousels() -> int:
    """Same sweep the API runs at startup, for carousels orphaned by a worker crash."""
    with database.session_scope() as session:
        failed = _fail_stale_carousels(session)
    if failed:
        log.warning("[worker] fail_stale_carousels marked %d carousel(s) FAILED", failed)
    return failed
