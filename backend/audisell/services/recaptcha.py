"""Google reCAPTCHA v3 verification."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from audisell.core.config import settings

log = logging.getLogger(__name__)

VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class RecaptchaNotConfigured(Exception):
    pass


@dataclass
class RecaptchaResult:
    success: bool
    score: float = 0.0
    action: Optional[str] = None
    error: Optional[str] = None


def verify_recaptcha(token: Optional[str], action: Optional[str] = None, remote_ip: Optional[str] = None) -> RecaptchaResult:
    """Ask Google whether ``token`` came from a human.

    Human means ``success`` with a score at or above RECAPTCHA_MIN_SCORE and,
    when ``action`` is given, a matching action. Without a secret the check
    passes in dev and raises :class:`RecaptchaNotConfigured` elsewhere.
    """
    if not token:
        return RecaptchaResult(success=False, error="No reCAPTCHA token provided")

    secret = settings.RECAPTCHA_SECRET_KEY
    if not secret:
        if settings.is_dev_mode:
            log.info("[recaptcha] secret not configured; accepting token in dev mode")
            return RecaptchaResult(success=True, score=1.0, action=action)
        raise RecaptchaNotConfigured("reCAPTCHA not configured")

    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        resp = requests.post(VERIFY_URL, data=data, timeout=10)
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        log.warning("event=recaptcha.request_failed err=%s", exc)
        return RecaptchaResult(success=False, error="Verification request failed")

    score = float(payload.get("score") or 0.0)
    received_action = payload.get("action")
    log.info(
        "event=recaptcha.verified success=%s score=%.2f action=%s errors=%s",
        payload.get("success"), score, received_action, payload.get("error-codes"),
    )
    if not (payload.get("success") and score >= settings.RECAPTCHA_MIN_SCORE):
        return RecaptchaResult(False, score, received_action, "Verification failed - suspected bot activity")
    if action and received_action != action:
        return RecaptchaResult(False, score, received_action, "Invalid action")
    return RecaptchaResult(True, score, received_action)
