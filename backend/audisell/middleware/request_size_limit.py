"""Request size limit middleware to prevent resource exhaustion."""
import os

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from audisell.core.cors import add_cors_headers_to_response
from audisell.core.logging import get_logger
from audisell.exceptions import error_payload

log = get_logger("audisell.middleware.request_size_limit")

# Audio uploads arrive base64-encoded in JSON, so leave headroom above MAX_AUDIO_BYTES
MAX_REQUEST_SIZE = int(os.getenv("MAX_REQUEST_SIZE_BYTES", str(50 * 1024 * 1024)))


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared Content-Length exceeds ``max_size`` with 413."""

    def __init__(self, app, max_size: int | None = None):
        super().__init__(app)
        self.max_size = max_size if max_size is not None else MAX_REQUEST_SIZE

    async def dispatch(self, request: Request, call_next):
        if request.method in ("POST", "PUT", "PATCH"):
            content_length = request.headers.get("content-length")
            if content_length:
                try:
                    size = int(content_length)
                except ValueError:
                    log.debug("Invalid content-length header: %s", content_length)
                    size = 0
                if size > self.max_size:
                    log.warning(
                        "Request size limit exceeded: %d bytes (max: %d bytes) for %s %s",
                        size, self.max_size, request.method, request.url.path,
                    )
                    message = (
                        f"Request too large. Maximum size: {self.max_size / 1024 / 1024:.0f}MB. "
                        f"Your request: {size / 1024 / 1024:.1f}MB"
                    )
                    response = JSONResponse(
                        error_payload("request_too_large", message, {"max_bytes": self.max_size}, request),
                        status_code=413,
                    )
                    return add_cors_headers_to_response(response, request)

        return await call_next(request)
