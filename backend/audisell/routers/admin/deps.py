from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from audisell.core.auth import get_current_admin_user, get_current_superadmin_user, get_current_user
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.models.user import User

log = logging.getLogger(__name__)

_optional_bearer = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def service_token_valid(token: Optional[str]) -> bool:
    expected = settings.SERVICE_TOKEN or ""
    return bool(token and expected and hmac.compare_digest(token, expected))


async def get_admin_or_service(
    request: Request,
    session: Session = Depends(get_session),
    token: Optional[str] = Depends(_optional_bearer),
    x_service_token: Optional[str] = Header(default=None),
) -> Optional[User]:
    """Admin user, or None when the call carries a valid ``X-Service-Token`` (cron jobs)."""
    if service_token_valid(x_service_token):
        log.info("event=admin.service_token_call path=%s", request.url.path)
        return None
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = await get_current_user(request, session, token)
    return get_current_admin_user(user)


__all__ = [
    "get_admin_or_service",
    "get_current_admin_user",
    "get_current_superadmin_user",
    "service_token_valid",
]
