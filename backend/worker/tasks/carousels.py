"""Carousel generation task."""
from __future__ import annotations

import logging
from typing import Optional

from audisell.services.pipeline import run_carousel_pipeline

from .app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(name="carousels.generate")
def generate_carousel(carousel_id: str) -> Optional[str]:
    """Run the transcribe -> script -> render pipeline; returns the final status."""
    log.info("[worker] carousels.generate start carousel=%s", carousel_id)
    status = run_carousel_pipeline(carousel_id)
    final = status.value if status is not None else None
    log.info("[worker] carousels.generate done carousel=%s status=%s", carousel_id, final)
    return final
