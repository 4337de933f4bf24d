"""Carousel generation pipeline.

QUEUED -> TRANSCRIBING -> SCRIPTING -> GENERATING -> COMPLETED, with FAILED
reachable from any stage. Each status write is committed before the stage
runs so pollers see progress.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlmodel import Session

from audisell.core import database
from audisell.core.clock import utcnow
from audisell.exceptions import PipelineError
from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.usage import UsageAction
from audisell.services import notifications, slides, storage
from audisell.services.scripts import generate_script
from audisell.services.transcription import transcribe_and_record
from audisell.services.usage import log_usage_event

log = logging.getLogger(__name__)


def _as_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _write(session: Session, carousel: Carousel, status: CarouselStatus, **fields: Any) -> None:
    carousel.status = status
    for key, value in fields.items():
        setattr(carousel, key, value)
    carousel.updated_at = utcnow()
    session.add(carousel)
    session.commit()
    log.info("[pipeline] carousel=%s status=%s", carousel.id, status.value)


def render_and_store(carousel: Carousel, script: Optional[Dict[str, Any]] = None, has_watermark: Optional[bool] = None) -> List[str]:
    """Render the carousel's slides and replace whatever files it had. Returns public URLs."""
    script = script if script is not None else carousel.script
    watermark = carousel.has_watermark if has_watermark is None else has_watermark
    svgs = slides.render_carousel(script or {}, carousel.format, carousel.style, has_watermark=watermark)
    storage.delete_prefix(storage.carousel_prefix(carousel.user_id, carousel.id))
    return storage.store_slides(carousel.user_id, carousel.id, svgs)


def _stage(name: str, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except PipelineError:
        raise
    except Exception as exc:
        raise PipelineError(name, str(exc) or exc.__class__.__name__) from exc


def run_carousel_pipeline(carousel_id: Any) -> Optional[CarouselStatus]:
    """Run every stage for ``carousel_id`` and return the final status.

    Failures are recorded on the row and logged; they are never re-raised.
    A carousel already COMPLETED or FAILED is left untouched.
    """
    cid = _as_uuid(carousel_id)
    started = time.monotonic()

    with database.session_scope() as session:
        carousel = session.get(Carousel, cid)
        if carousel is None:
            log.warning("[pipeline] carousel=%s not found", cid)
            return None
        if carousel.status.is_terminal:
            log.info("[pipeline] carousel=%s already %s; skipping", cid, carousel.status.value)
            return carousel.status

        user_id = carousel.user_id
        try:
            _write(session, carousel, CarouselStatus.TRANSCRIBING)
            audio = _stage("transcribe", storage.read_bytes, storage.key_from_url(carousel.audio_url or ""))
            transcription = _stage(
                "transcribe",
                transcribe_and_record,
                audio,
                carousel.audio_mime_type,
                user_id=user_id,
                carousel_id=cid,
                audio_seconds=carousel.audio_duration,
            )
            if not (transcription or "").strip():
                raise PipelineError("transcribe", "Transcription returned no text")

            _write(session, carousel, CarouselStatus.SCRIPTING, transcription=transcription)
            script = _stage(
                "script",
                generate_script,
                transcription,
                text_mode=carousel.text_mode.value,
                creative_tone=carousel.tone.value,
                slide_count=carousel.requested_slide_count,
                slide_count_mode=carousel.slide_count_mode.value,
                template=carousel.template.value,
                language=carousel.language,
                user_id=user_id,
                carousel_id=cid,
            )

            _write(session, carousel, CarouselStatus.GENERATING, script=script)
            image_urls = _stage("images", render_and_store, carousel, script)

            now = utcnow()
            _write(
                session,
                carousel,
                CarouselStatus.COMPLETED,
                slide_count=len(image_urls),
                image_urls=image_urls,
                processing_time=round(time.monotonic() - started, 3),
                completed_at=now,
                error_message=None,
            )
        except Exception as exc:
            stage = getattr(exc, "stage", "unknown")
            message = str(exc) or exc.__class__.__name__
            log.exception("[pipeline] carousel=%s failed stage=%s: %s", cid, stage, message)
            session.rollback()
            carousel = session.get(Carousel, cid)
            if carousel is None:
                return None
            _write(session, carousel, CarouselStatus.FAILED, error_message=message)
            log_usage_event(
                session,
                UsageAction.CAROUSEL_FAILED.value,
                user_id=user_id,
                status="error",
                error_message=message[:500],
                details={"carousel_id": str(cid), "stage": stage},
            )
            notifications.notify_carousel_failed(user_id, cid, message)
            return CarouselStatus.FAILED

        log.info(
            "event=carousel.completed carousel=%s slides=%d elapsed_s=%.2f",
            cid, carousel.slide_count or 0, carousel.processing_time or 0.0,
        )
        notifications.notify_carousel_ready(user_id, cid, carousel.slide_count or 0)
        return CarouselStatus.COMPLETED
