"""Application errors and the JSON error envelope every failure is rendered in:

    {"error": {"code", "message", "technical_message", "details", "retryable", "request_id"?}}
"""
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from audisell.core.cors import add_cors_headers_to_response
from audisell.core.logging import get_logger

log = get_logger("audisell.exceptions")

# code -> (message shown to users, client may retry)
ERROR_CODES: dict[str, tuple[str, bool]] = {
    "internal_error": ("Something went wrong on our side. Please try again in a moment.", True),
    "service_unavailable": ("An upstream service is unavailable right now. Please try again shortly.", True),
    "rate_limit_exceeded": ("Too many requests. Please slow down and try again.", True),
    "quota_exceeded": ("You have reached the carousel limit for your plan. Upgrade or try again later.", False),
    "validation_error": ("Some fields are invalid. Please review them and try again.", False),
    "request_too_large": ("The upload is too large. Please send a shorter recording.", False),
}


class AppError(Exception):
    """Base for errors rendered by the envelope handler instead of FastAPI's default."""

    code = "internal_error"
    status_code = 500
    headers: Optional[dict[str, str]] = None

    def details(self) -> Optional[dict[str, Any]]:
        return None


class RateLimitExceeded(AppError):
    """A limiter key is over its window budget."""

    code = "rate_limit_exceeded"
    status_code = 429

    def __init__(self, retry_after_ms: int, reset_at: str, headers: Optional[dict[str, str]] = None):
        super().__init__("Too many requests. Please try again later.")
        self.retry_after_ms = retry_after_ms
        self.reset_at = reset_at
        self.headers = headers or {}

    def details(self):
        return {"retry_after_ms": self.retry_after_ms, "reset_at": self.reset_at}


class QuotaExceeded(AppError):
    """The plan allowance for the current limit period is used up."""

    code = "quota_exceeded"
    status_code = 429

    def __init__(self, plan: str, limit: int, used: int, period: str = "daily"):
        super().__init__(f"Plan '{plan}' allows {limit} carousel(s) per {period} period; {used} used")
        self.plan = plan
        self.limit = limit
        self.used = used
        self.period = period

    def details(self):
        return {"plan": self.plan, "limit": self.limit, "used": self.used, "period": self.period}


class PipelineError(Exception):
    """A carousel pipeline stage failed; ``stage`` names the step."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


def error_payload(code: str, message: str, details: Any = None, request: Request | None = None, error_id: str | None = None):
    """Envelope for ``code``. Known codes get a friendly message; the raw one goes to technical_message."""
    friendly, retryable = ERROR_CODES.get(code, (message, False))
    if code == "http_error":
        friendly = message
    body: dict[str, Any] = {
        "code": code,
        "message": friendly,
        "technical_message": None if friendly == message else message,
        "details": details,
        "retryable": retryable,
    }
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        body["request_id"] = rid
    if error_id:
        body["error_id"] = error_id
    return {"error": body}


def _respond(request: Request, payload: dict, status_code: int, headers: Optional[dict] = None) -> JSONResponse:
    return add_cors_headers_to_response(JSONResponse(payload, status_code=status_code, headers=headers), request)


async def _http_error(request: Request, exc: StarletteHTTPException):
    log.warning("event=http_error method=%s path=%s status=%s detail=%s",
                request.method, request.url.path, exc.status_code, exc.detail)
    details: dict[str, Any] = {"status_code": exc.status_code}
    if isinstance(exc.detail, dict):
        # Structured details (maintenance, confirmation codes) pass through
        message = str(exc.detail.get("detail") or exc.detail.get("message") or "")
        details.update(exc.detail)
    else:
        message = str(exc.detail)
    return _respond(request, error_payload("http_error", message, details, request), exc.status_code,
                    getattr(exc, "headers", None))


async def _validation_error(request: Request, exc: ValidationError):
    errors = [{k: err[k] for k in ("loc", "msg", "type") if k in err} for err in exc.errors()]
    log.info("event=validation_error path=%s fields=%d", request.url.path, len(errors))
    return _respond(request, error_payload("validation_error", "Validation failed", errors, request), 422)


async def _app_error(request: Request, exc: AppError):
    log.info("event=%s path=%s details=%s", exc.code, request.url.path, exc.details())
    return _respond(request, error_payload(exc.code, str(exc), exc.details(), request), exc.status_code, exc.headers)


async def _unhandled(request: Request, exc: Exception):
    error_id = uuid.uuid4().hex
    log.error("event=unhandled error_id=%s method=%s path=%s", error_id, request.method, request.url.path,
              exc_info=(type(exc), exc, exc.__traceback__))
    return _respond(request, error_payload("internal_error", "Something went wrong", None, request, error_id=error_id), 500)


def install_exception_handlers(app):
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(AppError, _app_error)
    app.add_exception_handler(Exception, _unhandled)
