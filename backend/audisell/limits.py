import os

from slowapi import Limiter
from starlette.requests import Request

from audisell.core.ip_utils import get_client_ip

DISABLE = os.getenv("DISABLE_RATE_LIMITS") == "1"
DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "600/hour")
STORAGE = os.getenv("RATE_LIMIT_REDIS_URL")


def client_key(request: Request) -> str:
    """Global ceiling key: first forwarded hop, else the socket peer."""
    return get_client_ip(request) or "anonymous"


def _build_limiter() -> Limiter:
    kwargs = {"storage_uri": STORAGE} if STORAGE else {}
    return Limiter(
        key_func=client_key,
        default_limits=[DEFAULT],
        enabled=not DISABLE,
        headers_enabled=False,
        **kwargs,
    )


limiter = _build_limiter()


def exempt(endpoint):
    """Keep ``endpoint`` out of the global ceiling (Stripe webhook, health checks)."""
    return limiter.exempt(endpoint)


def is_exempt(endpoint) -> bool:
    return f"{endpoint.__module__}.{endpoint.__name__}" in limiter._exempt_routes


__all__ = ["limiter", "client_key", "exempt", "is_exempt", "DISABLE", "DEFAULT", "STORAGE"]
