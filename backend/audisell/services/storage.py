"""Local filesystem storage for recordings and rendered slides.

Objects are addressed by a relative key (``carousel-images/{user}/{carousel}/slide-1.svg``)
under ``MEDIA_ROOT`` and served by the static mount at ``MEDIA_URL_PREFIX``.
"""
from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, List
from uuid import UUID

from audisell.core.config import settings

log = logging.getLogger(__name__)

SLIDES_BUCKET = "carousel-images"
AUDIO_BUCKET = "audio"

_AUDIO_EXTENSIONS = {
    "webm": "webm",
    "mpeg": "mp3",
    "mp3": "mp3",
    "mp4": "m4a",
    "m4a": "m4a",
    "wav": "wav",
    "ogg": "ogg",
}


def media_root() -> Path:
    return Path(settings.MEDIA_ROOT)


def _resolve(key: str) -> Path:
    root = media_root().resolve()
    path = (root / key).resolve()
    if root != path and root not in path.parents:
        raise ValueError(f"Storage key escapes media root: {key!r}")
    return path


def audio_extension(mime_type: str | None) -> str:
    """File extension for an audio mime type (``audio/webm;codecs=opus`` -> ``webm``)."""
    mime = (mime_type or "").lower()
    for marker, ext in _AUDIO_EXTENSIONS.items():
        if marker in mime:
            return ext
    return "webm"


def carousel_prefix(user_id: UUID | str, carousel_id: UUID | str) -> str:
    return f"{SLIDES_BUCKET}/{user_id}/{carousel_id}"


def user_prefix(user_id: UUID | str) -> str:
    return f"{SLIDES_BUCKET}/{user_id}"


def slide_key(user_id: UUID | str, carousel_id: UUID | str, number: int) -> str:
    return f"{carousel_prefix(user_id, carousel_id)}/slide-{number}.svg"


def audio_key(user_id: UUID | str, carousel_id: UUID | str, mime_type: str | None) -> str:
    return f"{AUDIO_BUCKET}/{user_id}/{carousel_id}.{audio_extension(mime_type)}"


def save_bytes(key: str, data: bytes) -> Path:
    path = _resolve(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def read_bytes(key: str) -> bytes:
    return _resolve(key).read_bytes()


def exists(key: str) -> bool:
    return _resolve(key).exists()


def public_url(key: str, cache_bust: bool = True) -> str:
    prefix = settings.MEDIA_URL_PREFIX.rstrip("/")
    url = f"{prefix}/{key}"
    if cache_bust:
        url = f"{url}?t={int(time.time() * 1000)}"
    return url


def key_from_url(url: str) -> str:
    """Inverse of :func:`public_url` (query string dropped)."""
    prefix = settings.MEDIA_URL_PREFIX.rstrip("/") + "/"
    path = url.split("?", 1)[0]
    return path[len(prefix):] if path.startswith(prefix) else path.lstrip("/")


def store_slides(user_id: UUID | str, carousel_id: UUID | str, svgs: Iterable[str]) -> List[str]:
    """Write each SVG as ``slide-{n}.svg`` (overwriting) and return cache-busted public URLs."""
    urls: List[str] = []
    for number, svg in enumerate(svgs, start=1):
        key = slide_key(user_id, carousel_id, number)
        save_bytes(key, svg.encode("utf-8"))
        urls.append(public_url(key))
    return urls


def delete_prefix(prefix: str) -> int:
    """Remove every object under ``prefix``; returns the number of files deleted."""
    path = _resolve(prefix)
    if not path.exists():
        return 0
    if path.is_file():
        path.unlink()
        return 1
    count = sum(1 for p in path.rglob("*") if p.is_file())
    shutil.rmtree(path)
    log.info("event=storage.delete_prefix prefix=%s files=%d", prefix, count)
    return count


def delete_key(key: str) -> bool:
    path = _resolve(key)
    if path.is_file():
        path.unlink()
        return True
    return False
