"""Speech-to-text through the OpenAI Whisper transcription endpoint."""
from __future__ import annotations

import logging
import os
import time
from threading import Lock
from typing import Optional
from uuid import UUID

import requests
from requests.adapters import HTTPAdapter

from audisell.core import database
from audisell.core.config import settings
from audisell.models.usage import ApiName
from audisell.services.storage import audio_extension
from audisell.services.usage import record_api_usage

log = logging.getLogger(__name__)

REQUEST_TIMEOUT = (10, 300)
STUB_TRANSCRIPTION = (
    "Hoje eu quero falar sobre consistência. Muita gente acha que precisa de motivação "
    "para começar, mas o que realmente funciona é criar um hábito pequeno e repetir todos os dias."
)


class TranscriptionError(Exception):
    """Whisper call failed; ``status_code`` is the HTTP status to surface."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class TranscriptionConfigError(TranscriptionError):
    def __init__(self, message: str = "OPENAI_API_KEY is not configured"):
        super().__init__(message, status_code=500)


_session_lock = Lock()
_shared_session: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _shared_session
    if _shared_session is None:
        with _session_lock:
            if _shared_session is None:
                session = requests.Session()
                adapter = HTTPAdapter(pool_connections=4, pool_maxsize=8)
                session.mount("https://", adapter)
                session.mount("http://", adapter)
                _shared_session = session
    return _shared_session


def _stub_mode() -> bool:
    return (os.getenv("AI_STUB_MODE") or "").strip() == "1"


def transcribe_audio(audio_bytes: bytes, mime_type: Optional[str] = None) -> str:
    """Send ``audio_bytes`` to Whisper and return the transcribed text.

    429 maps to a "try again shortly" error, 401/402 to an API key problem and
    any other non-2xx response raises with the status code.
    """
    if not audio_bytes:
        raise TranscriptionError("No audio data provided", status_code=400)

    api_key = os.getenv("OPENAI_API_KEY") or settings.OPENAI_API_KEY
    if not api_key:
        if _stub_mode():
            log.info("event=transcription.stub bytes=%d", len(audio_bytes))
            return STUB_TRANSCRIPTION
        raise TranscriptionConfigError()

    ext = audio_extension(mime_type)
    url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/audio/transcriptions"
    files = {"file": (f"audio.{ext}", audio_bytes, mime_type or "audio/webm")}
    data = {"model": settings.WHISPER_MODEL or "whisper-1"}

    start = time.time()
    try:
        resp = _get_session().post(
            url,
            headers={"Authorization": f"Bearer {api_key.strip()}"},
            files=files,
            data=data,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        log.error("event=transcription.request_failed err=%s", exc)
        raise TranscriptionError(f"Transcription request failed: {exc}") from exc

    if resp.status_code == 429:
        log.warning("event=transcription.rate_limited")
        raise TranscriptionError("Rate limit exceeded. Please try again shortly.", status_code=429)
    if resp.status_code in (401, 402):
        log.error("event=transcription.auth_failed status=%s", resp.status_code)
        raise TranscriptionError("API key error. Please check the OpenAI API key.", status_code=resp.status_code)
    if not resp.ok:
        log.error("event=transcription.failed status=%s body=%s", resp.status_code, resp.text[:300])
        raise TranscriptionError(f"Transcription failed with status {resp.status_code}")

    try:
        text = (resp.json().get("text") or "").strip()
    except ValueError as exc:
        raise TranscriptionError("Transcription response was not valid JSON") from exc

    log.info(
        "event=transcription.completed ext=%s bytes=%d chars=%d elapsed_ms=%d",
        ext, len(audio_bytes), len(text), int((time.time() - start) * 1000),
    )
    return text


def transcribe_and_record(
    audio_bytes: bytes,
    mime_type: Optional[str],
    *,
    user_id: Optional[UUID],
    carousel_id: Optional[UUID] = None,
    audio_seconds: Optional[float] = None,
) -> str:
    """Transcribe and store an ``apiusage`` row for the call."""
    text = transcribe_audio(audio_bytes, mime_type)
    with database.session_scope() as session:
        record_api_usage(
            session,
            user_id=user_id,
            carousel_id=carousel_id,
            action="transcribe",
            api_name=ApiName.whisper,
            audio_seconds=audio_seconds,
        )
    return text
