"""Shared Redis connection for the rate limiter.

Everything that uses it has an in-process fallback, so a missing or
unreachable Redis is logged and treated as "no Redis".
"""
import logging
import time
from typing import Optional

import redis

from audisell.core.config import settings

log = logging.getLogger("audisell.core.redis_client")

# After a failed connect, wait this long before trying again
RECONNECT_AFTER_SECONDS = 30.0

_client: Optional[redis.Redis] = None
_next_attempt_at = 0.0


def get_redis_client() -> Optional[redis.Redis]:
    global _client, _next_attempt_at

    if _client is not None:
        return _client
    if not (settings.REDIS_HOST and settings.REDIS_PORT):
        return None
    if time.monotonic() < _next_attempt_at:
        return None

    candidate = redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        socket_timeout=1.0,
        socket_connect_timeout=1.0,
        decode_responses=True,
    )
    try:
        candidate.ping()
    except redis.RedisError as exc:
        _next_attempt_at = time.monotonic() + RECONNECT_AFTER_SECONDS
        log.warning("event=redis.unavailable host=%s err=%s retry_in=%.0fs", settings.REDIS_HOST, exc, RECONNECT_AFTER_SECONDS)
        return None
    log.info("event=redis.connected host=%s port=%s", settings.REDIS_HOST, settings.REDIS_PORT)
    _client = candidate
    return _client


def reset_redis_client() -> None:
    global _client, _next_attempt_at
    _client = None
    _next_attempt_at = 0.0
