import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from audisell.core.auth import get_current_user
from audisell.core.config import settings
from audisell.core.rate_limiter import rate_limited
from audisell.models.user import User
from audisell.services.transcription import TranscriptionError, transcribe_and_record

log = logging.getLogger(__name__)

router = APIRouter(tags=["transcription"])


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio: str = Field(min_length=1, description="Base64 encoded audio")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    audio_seconds: Optional[float] = Field(default=None, ge=0, alias="audioSeconds")


class TranscribeResponse(BaseModel):
    transcription: str


@router.post(
    "/transcribe",
    response_model=TranscribeResponse,
    dependencies=[Depends(rate_limited("transcription"))],
)
def transcribe(payload: TranscribeRequest, current_user: User = Depends(get_current_user)):
    try:
        audio = base64.b64decode(payload.audio, validate=False)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Audio must be base64 encoded")
    if not audio:
        raise HTTPException(status_code=400, detail="No audio data provided")
    if len(audio) > settings.MAX_AUDIO_BYTES:
        raise HTTPException(status_code=413, detail="Audio file is too large")

    try:
        text = transcribe_and_record(
            audio,
            payload.mime_type,
            user_id=current_user.id,
            audio_seconds=payload.audio_seconds,
        )
    except TranscriptionError as exc:
        log.warning("event=transcribe.failed user=%s status=%s error=%s", current_user.id, exc.status_code, exc)
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    return TranscribeResponse(transcription=text)
