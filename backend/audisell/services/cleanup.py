from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlmodel import Session, col, select

from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.models.carousel import Carousel
from audisell.models.usage import UsageAction
from audisell.services import storage
from audisell.services.usage import log_usage_event

log = logging.getLogger(__name__)


def cleanup_old_images(session: Session, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Delete slide files of carousels older than the retention window.

    The rows stay (history, transcription, script); only ``image_urls`` is cleared.
    """
    days = retention_days if retention_days is not None else settings.IMAGE_RETENTION_DAYS
    cutoff = (now or utcnow()) - timedelta(days=days)
    rows = session.exec(
        select(Carousel).where(Carousel.created_at < cutoff, col(Carousel.image_urls).is_not(None))
    ).all()

    carousels_cleaned = 0
    files_deleted = 0
    errors = 0
    for carousel in rows:
        if not carousel.image_urls:
            continue
        try:
            files_deleted += storage.delete_prefix(storage.carousel_prefix(carousel.user_id, carousel.id))
        except OSError as exc:
            errors += 1
            log.warning("event=cleanup.delete_failed carousel=%s err=%s", carousel.id, exc)
            continue
        carousel.image_urls = None
        carousel.updated_at = utcnow()
        session.add(carousel)
        carousels_cleaned += 1
    session.commit()

    summary = {
        "retention_days": days,
        "cutoff": cutoff.isoformat(),
        "carousels_cleaned": carousels_cleaned,
        "files_deleted": files_deleted,
        "errors": errors,
    }
    log_usage_event(
        session,
        UsageAction.CLEANUP_OLD_IMAGES.value,
        status="success" if not errors else "partial",
        details=summary,
    )
    log.info(
        "event=cleanup.completed carousels=%d files=%d errors=%d", carousels_cleaned, files_deleted, errors
    )
    return summary
