"""Client address resolution behind the load balancer."""

from __future__ import annotations

import ipaddress
import os
from typing import Optional

from fastapi import Request

# Local runs without a proxy can turn this off so spoofed headers are ignored
TRUST_PROXY_HEADERS = (os.getenv("TRUST_PROXY_HEADERS") or "1").strip().lower() not in {"0", "false", "no"}

_PROXY_HEADERS = ("x-forwarded-for", "x-real-ip")


def _valid_ip(candidate: str) -> Optional[str]:
    candidate = candidate.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def get_client_ip(request: Request) -> Optional[str]:
    """First valid proxy-reported address (left-most X-Forwarded-For hop, then
    X-Real-IP), else the socket peer. None when nothing is known."""
    if TRUST_PROXY_HEADERS:
        for header in _PROXY_HEADERS:
            raw = request.headers.get(header)
            if raw:
                ip = _valid_ip(raw.split(",")[0])
                if ip:
                    return ip
    if request.client and request.client.host:
        return request.client.host
    return None
