"""CORS header utility for exception handlers and other responses that bypass
the CORS middleware.
"""
from __future__ import annotations

from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse

from audisell.core.config import settings

_TRUSTED_SUFFIXES = ("audisell.com",)


def _request_origin(request: Request) -> str | None:
    origin = request.headers.get("origin")
    if origin:
        return origin
    # Derive from Referer when the browser omitted Origin
    ref = request.headers.get("referer") or request.headers.get("referrer")
    if not ref:
        return None
    parsed = urlparse(ref)
    if parsed.scheme and parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}"
    return None


def allowed_origin(origin: str | None) -> str | None:
    """Return the origin to echo back, or None when it is not trusted."""
    if not origin:
        return None
    origin_clean = origin.rstrip("/")
    if origin_clean in settings.cors_allowed_origin_list:
        return origin_clean
    parsed = urlparse(origin_clean)
    host = (parsed.hostname or "").lower()
    if host and parsed.scheme == "https":
        for suffix in _TRUSTED_SUFFIXES:
            if host == suffix or host.endswith(f".{suffix}"):
                return f"{parsed.scheme}://{parsed.netloc}"
    return None


def add_cors_headers_to_response(response: JSONResponse, request: Request) -> JSONResponse:
    """Add CORS headers to a response when the request origin is allowed."""
    chosen_origin = allowed_origin(_request_origin(request))
    if chosen_origin:
        response.headers["Access-Control-Allow-Origin"] = chosen_origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        vary_existing = response.headers.get("Vary", "")
        vary_values = [v.strip() for v in vary_existing.split(",") if v.strip()]
        for v in ("Origin", "Referer"):
            if v not in vary_values:
                vary_values.append(v)
        response.headers["Vary"] = ", ".join(vary_values)
    return response
