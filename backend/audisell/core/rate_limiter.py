"""Fixed-window rate limiting.

Each limited operation has a ``RateLimitConfig``; a call for ``identifier``
counts against the key ``{key_prefix}:{identifier}``. The first call after a
window expires opens a new window of ``window_ms``. Counts live in process
memory by default, or in Redis when it is configured (shared across workers).
"""
from __future__ import annotations

import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol
from uuid import UUID

import redis
from fastapi import Request
from jose import JWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from audisell import limits
from audisell.core.clock import utcnow
from audisell.core.redis_client import get_redis_client
from audisell.exceptions import RateLimitExceeded

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int
    key_prefix: str = "rl"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after_ms: Optional[int] = None


RATE_LIMITS: dict[str, RateLimitConfig] = {
    # AI generation
    "transcription": RateLimitConfig(5, 60_000, "transcribe"),
    "script_generation": RateLimitConfig(10, 60_000, "script"),
    "image_generation": RateLimitConfig(10, 60_000, "image"),
    "checkout": RateLimitConfig(5, 60_000, "checkout"),
    "export_data": RateLimitConfig(3, 60_000, "export"),
    "general": RateLimitConfig(100, 60_000, "api"),
    "auth": RateLimitConfig(10, 60_000, "auth"),
    "password_reset": RateLimitConfig(3, 60 * 60_000, "pwd-reset"),
}

CLEANUP_PROBABILITY = 0.01


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimitStore(Protocol):
    def hit(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        """Count one call for ``key``; return (count in window, window reset epoch ms)."""
        ...


class InMemoryRateLimitStore:
    """Map of key -> [count, reset_at_ms], guarded by a lock."""

    def __init__(self, cleanup_probability: float = CLEANUP_PROBABILITY):
        self._entries: dict[str, list[int]] = {}
        self._lock = threading.Lock()
        self.cleanup_probability = cleanup_probability

    def hit(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        with self._lock:
            if random.random() < self.cleanup_probability:
                self._cleanup(now_ms)
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now_ms:
                entry = [0, now_ms + window_ms]
                self._entries[key] = entry
            entry[0] += 1
            return entry[0], entry[1]

    def _cleanup(self, now_ms: int) -> int:
        expired = [k for k, (_, reset_at) in self._entries.items() if reset_at <= now_ms]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def cleanup(self, now_ms: Optional[int] = None) -> int:
        with self._lock:
            return self._cleanup(now_ms if now_ms is not None else _now_ms())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore:
    """INCR + PEXPIRE on ``rl:{key}``; Redis expiry replaces the sweep."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def hit(self, key: str, window_ms: int, now_ms: int) -> tuple[int, int]:
        redis_key = f"rl:{key}"
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self.client.pexpire(redis_key, window_ms)
            ttl = window_ms
        return int(count), now_ms + int(ttl)


_memory_store = InMemoryRateLimitStore()


def get_store() -> RateLimitStore:
    client = get_redis_client()
    if client is not None:
        return RedisRateLimitStore(client)
    return _memory_store


def reset_memory_store() -> None:
    _memory_store.clear()


def check_rate_limit(
    identifier: str,
    config: RateLimitConfig,
    store: Optional[RateLimitStore] = None,
    now_ms: Optional[int] = None,
) -> RateLimitResult:
    """Count a call for ``identifier`` and decide whether it is within the window budget."""
    now_ms = now_ms if now_ms is not None else _now_ms()
    key = f"{config.key_prefix}:{identifier}"
    if store is None:
        store = get_store()
    try:
        count, reset_ms = store.hit(key, config.window_ms, now_ms)
    except redis.RedisError as exc:
        log.warning("event=rate_limit.store_failed key=%s err=%s; allowing", key, exc)
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests,
            reset_at=_from_ms(now_ms + config.window_ms),
        )

    allowed = count <= config.max_requests
    return RateLimitResult(
        allowed=allowed,
        remaining=max(0, config.max_requests - count),
        reset_at=_from_ms(reset_ms),
        retry_after_ms=None if allowed else max(0, reset_ms - now_ms),
    )


def _from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


RATE_LIMIT_HEADER_NAMES = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After")


def rate_limit_headers(result: RateLimitResult, config: RateLimitConfig) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": _iso(result.reset_at),
    }
    if result.retry_after_ms:
        headers["Retry-After"] = str(math.ceil(result.retry_after_ms / 1000))
    return headers


def enforce_rate_limit(identifier: str, name: str) -> RateLimitResult:
    """Check ``RATE_LIMITS[name]`` for ``identifier`` and raise RateLimitExceeded when denied."""
    config = RATE_LIMITS[name]
    result = check_rate_limit(identifier, config)
    if not result.allowed:
        raise RateLimitExceeded(
            retry_after_ms=result.retry_after_ms or 0,
            reset_at=_iso(result.reset_at),
            headers=rate_limit_headers(result, config),
        )
    return result


def _request_identifier(request: Request) -> str:
    # Deferred: core.auth pulls in the database layer
    from audisell.core.auth import decode_access_token
    from audisell.core.ip_utils import get_client_ip

    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        try:
            payload = decode_access_token(auth_header.split(" ", 1)[1].strip())
            uid = payload.get("uid") or payload.get("sub")
            if uid:
                return f"user:{uid}"
        except JWTError:
            pass
    return f"ip:{get_client_ip(request) or 'unknown'}"


def rate_limited(name: str) -> Callable[[Request], None]:
    """FastAPI dependency factory applying ``RATE_LIMITS[name]`` per user (or client IP)."""
    if name not in RATE_LIMITS:
        raise KeyError(f"Unknown rate limit '{name}'")

    def _dependency(request: Request) -> None:
        if limits.DISABLE:
            return None
        result = enforce_rate_limit(_request_identifier(request), name)
        request.state.rate_limit_headers = rate_limit_headers(result, RATE_LIMITS[name])
        return None

    _dependency.__name__ = f"rate_limited_{name}"
    return _dependency


def check_db_rate_limit(
    session: Session,
    user_id: UUID,
    action: str,
    max_requests: int,
    window_ms: int,
) -> RateLimitResult:
    """Distributed variant counting ``apiusage`` rows for ``action`` inside the window."""
    from audisell.models.usage import ApiUsage

    now = utcnow()
    window_start = now - timedelta(milliseconds=window_ms)
    reset_at = now + timedelta(milliseconds=window_ms)
    try:
        count = session.exec(
            select(func.count(ApiUsage.id)).where(
                ApiUsage.user_id == user_id,
                ApiUsage.action == action,
                ApiUsage.created_at >= window_start,
            )
        ).one()
    except SQLAlchemyError as exc:
        session.rollback()
        log.error("event=rate_limit.db_check_failed action=%s err=%s; allowing", action, exc)
        return RateLimitResult(allowed=True, remaining=max_requests, reset_at=reset_at)

    count = int(count or 0)
    allowed = count < max_requests
    return RateLimitResult(
        allowed=allowed,
        remaining=max(0, max_requests - count),
        reset_at=reset_at,
        retry_after_ms=None if allowed else window_ms,
    )
