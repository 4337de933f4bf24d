"""Process-wide logging plus optional Sentry error reporting."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from audisell.core.logging import configure_logging, get_logger, request_id_var

if TYPE_CHECKING:
    from audisell.core.config import Settings

log = get_logger("audisell.config.logging")

# Client mistakes, not incidents
_IGNORED_STATUS = {"401", "403", "404", "409", "422"}


def _before_send(event, hint):
    if str(event.get("tags", {}).get("status_code")) in _IGNORED_STATUS:
        return None
    rid = request_id_var.get()
    if rid != "-":
        event.setdefault("tags", {})["request_id"] = rid
    return event


def setup_sentry(settings: Settings) -> bool:
    """Initialise the Sentry SDK outside dev/test when SENTRY_DSN is set."""
    if not settings.SENTRY_DSN or settings.is_dev_mode:
        log.debug("[startup] Sentry off (env=%s)", settings.env_name)
        return False
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.env_name,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            send_default_pii=False,
            before_send=_before_send,
        )
    except Exception as exc:
        log.warning("[startup] Sentry init failed: %s", exc)
        return False
    log.info("[startup] Sentry reporting for env=%s", settings.env_name)
    return True


__all__ = ["configure_logging", "setup_sentry"]
