"""Carousel creation, polling and management."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlmodel import Session
from starlette.datastructures import UploadFile

from audisell.billing import plans
from audisell.core import crud
from audisell.core.auth import get_current_user, is_admin
from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.exceptions import QuotaExceeded
from audisell.models.carousel import (
    Carousel,
    CarouselPublic,
    CarouselStatus,
    CarouselStatusPublic,
    CreativeTone,
    SlideCountMode,
    SlideFormat,
    SlideStyle,
    Template,
    TextMode,
)
from audisell.models.usage import UsageAction
from audisell.models.user import User
from audisell.services import storage
from audisell.services.pipeline import render_and_store
from audisell.services.subscriptions import effective_plan, resolve_subscription
from audisell.services.task_dispatcher import dispatcher
from audisell.services.usage import increment_daily_usage, log_usage_event

log = logging.getLogger(__name__)

router = APIRouter(prefix="/carousels", tags=["carousels"])

PREFERENCE_FIELDS = ("tone", "text_mode", "template", "format", "style", "language")


class CarouselOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tone: CreativeTone = Field(default=CreativeTone.professional, alias="creativeTone")
    text_mode: TextMode = Field(default=TextMode.compact, alias="textMode")
    slide_count: int = Field(default=6, ge=1, le=12, alias="slideCount")
    slide_count_mode: SlideCountMode = Field(default=SlideCountMode.auto, alias="slideCountMode")
    template: Template = Template.solid
    format: SlideFormat = SlideFormat.POST_SQUARE
    style: SlideStyle = SlideStyle.BLACK_WHITE
    language: str = Field(default="pt-BR", max_length=10)
    audio_duration: Optional[float] = Field(default=None, ge=0, alias="audioDuration")


class SlideEdit(BaseModel):
    number: int = Field(ge=1)
    text: str = Field(min_length=1, max_length=2000)


class ScriptEditPayload(BaseModel):
    slides: List[SlideEdit] = Field(min_length=1)


class RenderPayload(BaseModel):
    format: Optional[SlideFormat] = None
    style: Optional[SlideStyle] = None


def _load_own(session: Session, carousel_id: UUID, user: User) -> Carousel:
    carousel = crud.get_carousel_for_user(session, carousel_id, user.id)
    if carousel is None:
        raise HTTPException(status_code=404, detail="Carousel not found")
    return carousel


def _decode_base64_audio(raw: str) -> bytes:
    if "," in raw and raw.strip().startswith("data:"):
        raw = raw.split(",", 1)[1]
    try:
        return base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Audio must be base64 encoded")


async def _read_submission(request: Request) -> tuple[bytes, Optional[str], Dict[str, Any]]:
    """Audio bytes, mime type and option fields from a multipart form or a JSON body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("audio") or form.get("file")
        if not isinstance(upload, UploadFile):
            raise HTTPException(status_code=400, detail="No audio file provided")
        audio = await upload.read()
        fields = {k: v for k, v in form.items() if k not in ("audio", "file") and isinstance(v, str)}
        return audio, form.get("mimeType") or upload.content_type, fields

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Expected multipart form data or a JSON body")
    if not isinstance(body, dict) or not body.get("audio"):
        raise HTTPException(status_code=400, detail="No audio data provided")
    audio = _decode_base64_audio(str(body.pop("audio")))
    mime = body.pop("mimeType", None) or body.pop("mime_type", None)
    return audio, mime, body


def _options(fields: Dict[str, Any], user: User) -> CarouselOptions:
    prefs = {k: v for k, v in (user.preferences or {}).items() if k in PREFERENCE_FIELDS and v}
    try:
        return CarouselOptions.model_validate({**prefs, **fields})
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"detail": "Invalid carousel options", "errors": exc.errors(include_url=False, include_context=False)},
        )


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CarouselPublic,
    dependencies=[Depends(rate_limited("transcription"))],
)
async def create_carousel(
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    """Accept a recording and queue it for transcription, scripting and rendering."""
    state = resolve_subscription(session, current_user)
    if state.quota_exhausted:
        raise QuotaExceeded(state.plan, state.daily_limit, state.period_used, state.limit_period)

    audio, mime_type, fields = await _read_submission(request)
    opts = _options(fields, current_user)

    plan = plans.admin_plan() if state.is_admin else plans.load_plan(session, state.plan)
    if opts.template.value not in plan["templates"]:
        raise HTTPException(
            status_code=403,
            detail={"detail": f"Template '{opts.template.value}' is not available on the {state.plan} plan", "plan": state.plan},
        )
    if not audio:
        raise HTTPException(status_code=400, detail="Audio is empty")
    if len(audio) > settings.MAX_AUDIO_BYTES:
        raise HTTPException(status_code=413, detail="Audio file is too large")

    carousel = Carousel(
        user_id=current_user.id,
        status=CarouselStatus.QUEUED,
        audio_mime_type=(mime_type or "audio/webm")[:80],
        audio_duration=opts.audio_duration,
        tone=opts.tone,
        text_mode=opts.text_mode,
        slide_count_mode=opts.slide_count_mode,
        requested_slide_count=opts.slide_count,
        template=opts.template,
        format=opts.format,
        style=opts.style,
        language=opts.language,
        has_watermark=bool(plan["has_watermark"]),
    )
    key = storage.audio_key(current_user.id, carousel.id, carousel.audio_mime_type)
    storage.save_bytes(key, audio)
    carousel.audio_url = storage.public_url(key, cache_bust=False)
    session.add(carousel)
    session.commit()
    session.refresh(carousel)

    increment_daily_usage(session, current_user.id)
    log_usage_event(
        session,
        UsageAction.CAROUSEL_CREATED.value,
        user_id=current_user.id,
        details={"carousel_id": str(carousel.id), "plan": state.plan, "bytes": len(audio)},
    )
    mode = dispatcher.dispatch_carousel(carousel.id, background_tasks)
    log.info("event=carousel.created carousel=%s user=%s dispatch=%s", carousel.id, current_user.id, mode)
    return carousel


@router.get("", response_model=List[CarouselPublic])
async def list_carousels(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> List[Carousel]:
    """Newest first; plans without history only see their latest carousel."""
    plan = effective_plan(session, current_user)
    limit = None if (plan["has_history"] or is_admin(current_user)) else 1
    return crud.list_carousels_for_user(session, current_user.id, limit=limit)


@router.get("/{carousel_id}", response_model=CarouselPublic)
async def get_carousel(
    carousel_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    return _load_own(session, carousel_id, current_user)


@router.get("/{carousel_id}/status", response_model=CarouselStatusPublic)
async def get_carousel_status(
    carousel_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    return _load_own(session, carousel_id, current_user)


@router.patch("/{carousel_id}/script", response_model=CarouselPublic)
async def edit_script(
    carousel_id: UUID,
    payload: ScriptEditPayload,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    carousel = _load_own(session, carousel_id, current_user)
    if not effective_plan(session, current_user)["has_editor"]:
        raise HTTPException(status_code=403, detail="The slide editor is not available on your plan")
    if not carousel.script or not carousel.script.get("slides"):
        raise HTTPException(status_code=400, detail="This carousel has no script to edit")

    slides = [dict(s) for s in carousel.script["slides"]]
    by_number = {int(s.get("number", i + 1)): s for i, s in enumerate(slides)}
    for edit in payload.slides:
        if edit.number not in by_number:
            raise HTTPException(status_code=400, detail=f"Slide {edit.number} does not exist")
        by_number[edit.number]["text"] = edit.text
    carousel.script = {**carousel.script, "slides": slides}
    carousel.updated_at = utcnow()
    session.add(carousel)
    session.commit()
    session.refresh(carousel)
    return carousel


def _rerender(session: Session, carousel: Carousel, payload: Optional[RenderPayload], has_watermark: bool) -> Carousel:
    if carousel.status not in (CarouselStatus.COMPLETED, CarouselStatus.FAILED) or not carousel.script:
        raise HTTPException(status_code=409, detail="Carousel is not ready for image generation")
    if payload is not None:
        if payload.format is not None:
            carousel.format = payload.format
        if payload.style is not None:
            carousel.style = payload.style
    try:
        urls = render_and_store(carousel, has_watermark=has_watermark)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    carousel.image_urls = urls
    carousel.slide_count = len(urls)
    carousel.has_watermark = has_watermark
    carousel.status = CarouselStatus.COMPLETED
    carousel.error_message = None
    carousel.completed_at = carousel.completed_at or utcnow()
    carousel.updated_at = utcnow()
    session.add(carousel)
    session.commit()
    session.refresh(carousel)
    return carousel


@router.post(
    "/{carousel_id}/images",
    response_model=CarouselPublic,
    dependencies=[Depends(rate_limited("image_generation"))],
)
async def regenerate_images(
    carousel_id: UUID,
    payload: Optional[RenderPayload] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    """Re-render slides from the stored (possibly edited) script."""
    carousel = _load_own(session, carousel_id, current_user)
    watermark = bool(effective_plan(session, current_user)["has_watermark"])
    return _rerender(session, carousel, payload, has_watermark=watermark)


@router.post(
    "/{carousel_id}/regenerate-without-watermark",
    response_model=CarouselPublic,
    dependencies=[Depends(rate_limited("image_generation"))],
)
async def regenerate_without_watermark(
    carousel_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Carousel:
    carousel = _load_own(session, carousel_id, current_user)
    if effective_plan(session, current_user)["has_watermark"]:
        raise HTTPException(status_code=403, detail="Upgrade to a paid plan to remove the watermark")
    if carousel.status != CarouselStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Only completed carousels can be regenerated")
    return _rerender(session, carousel, None, has_watermark=False)


@router.delete("/{carousel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_carousel(
    carousel_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Response:
    carousel = _load_own(session, carousel_id, current_user)
    removed = storage.delete_prefix(storage.carousel_prefix(carousel.user_id, carousel.id))
    if carousel.audio_url:
        removed += int(storage.delete_key(storage.key_from_url(carousel.audio_url)))
    session.delete(carousel)
    session.commit()
    log.info("event=carousel.deleted carousel=%s files=%d", carousel_id, removed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
