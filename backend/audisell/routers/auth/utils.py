"""Shared helpers for the authentication routers."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status
from sqlmodel import Session

from audisell.core.auth import create_access_token, get_user_role, is_admin
from audisell.core.clock import utcnow
from audisell.core.ip_utils import get_client_ip
from audisell.core.security import rehash_if_outdated, verify_password
from audisell.models.settings import load_feature_flags
from audisell.models.user import User, UserPublic
from audisell.services.recaptcha import RecaptchaNotConfigured, verify_recaptcha

logger = logging.getLogger(__name__)


def to_user_public(user: User) -> UserPublic:
    """Public view of ``user``; role and admin flag reflect every admin source."""
    public = UserPublic.model_validate(user, from_attributes=True)
    public.role = get_user_role(user)
    public.is_admin = is_admin(user)
    return public


def issue_token(user: User) -> dict:
    token = create_access_token({"sub": user.email, "uid": str(user.id)})
    return {"access_token": token, "token_type": "bearer"}


def check_credentials(user: User | None, password: str) -> bool:
    return bool(user and verify_password(password, user.hashed_password))


def touch_last_login(session: Session, user: User, password: str | None = None) -> None:
    user.last_login_at = utcnow()
    if password and user.hashed_password:
        upgraded = rehash_if_outdated(password, user.hashed_password)
        if upgraded:
            user.hashed_password = upgraded
            logger.info("event=auth.rehashed user=%s", user.id)
    session.add(user)
    session.commit()


def request_meta(request: Request) -> tuple[str | None, str | None]:
    return get_client_ip(request), request.headers.get("user-agent")


def require_human(session: Session, token: str | None, action: str, request: Request) -> None:
    """Enforce reCAPTCHA when the ``recaptcha_enabled`` feature flag is on."""
    if not load_feature_flags(session).recaptcha_enabled:
        return
    try:
        result = verify_recaptcha(token, action=action, remote_ip=get_client_ip(request))
    except RecaptchaNotConfigured:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="reCAPTCHA not configured")
    if not result.success:
        logger.info("event=recaptcha.rejected action=%s score=%.2f", action, result.score)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.error or "reCAPTCHA verification failed")
