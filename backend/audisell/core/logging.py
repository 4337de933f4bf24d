from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Optional

from .logging_redactor import RedactionFilter, install_redaction_filter

# Set per request by RequestIDMiddleware; "-" outside a request (worker, startup)
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s rid=%(request_id)s: %(message)s"

_QUIET = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "stripe": logging.WARNING,
    "passlib.handlers.bcrypt": logging.ERROR,
}

_configured = False


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class SingleLineFormatter(logging.Formatter):
    """Tracebacks and multi-line messages folded onto one line for log collectors."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return super().format(record).replace("\n", " | ")


def _level_from_env(default: int) -> int:
    resolved = logging.getLevelName((os.getenv("LOG_LEVEL") or "").upper())
    return resolved if isinstance(resolved, int) else default


def configure_logging(level: int = logging.INFO) -> None:
    global _configured
    root = logging.getLogger()
    root.setLevel(_level_from_env(level))

    for f in list(root.filters):
        if isinstance(f, (RedactionFilter, RequestContextFilter)):
            root.removeFilter(f)
    for h in list(root.handlers):
        if getattr(h, "_audisell_handler", False):
            root.removeHandler(h)
            continue
        for f in list(h.filters):
            if isinstance(f, RedactionFilter):
                h.removeFilter(f)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter(LOG_FORMAT))
    handler.addFilter(RequestContextFilter())
    handler._audisell_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # On the logger, not the handler, so caplog sees redacted text too
    install_redaction_filter(root)

    for name, lib_level in _QUIET.items():
        logging.getLogger(name).setLevel(lib_level)
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name or "audisell")
