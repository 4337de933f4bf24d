"""JWT bearer auth, role resolution and the user dependencies routers build on."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlmodel import Session

from audisell.core import crud
from audisell.core.clock import utcnow
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.models.settings import load_admin_settings
from audisell.models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"
_ELEVATED = (ROLE_ADMIN, ROLE_SUPERADMIN)


def is_admin_email(email: str | None) -> bool:
    configured = (settings.ADMIN_EMAIL or "").strip().lower()
    return bool(configured and email and email.strip().lower() == configured)


def get_user_role(user: Any) -> str:
    """Stored role wins; then ADMIN_EMAIL (superadmin); then the legacy is_admin flag."""
    stored = str(getattr(user, "role", "") or "").lower()
    if stored in _ELEVATED:
        return stored
    if is_admin_email(getattr(user, "email", None)):
        return ROLE_SUPERADMIN
    return ROLE_ADMIN if getattr(user, "is_admin", False) else ROLE_USER


def is_admin(user: Any) -> bool:
    return get_user_role(user) in _ELEVATED


def create_access_token(data: Mapping[str, Any], expires_delta: timedelta | None = None) -> str:
    claims = {**data, "exp": utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Claims of a token from create_access_token; JWTError when invalid or expired."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from_claims(session: Session, claims: Mapping[str, Any]) -> Optional[User]:
    # uid survives an email change; sub-only tokens predate it
    uid = claims.get("uid")
    if uid:
        try:
            return crud.get_user_by_id(session, UUID(str(uid)))
        except ValueError:
            return None
    sub = claims.get("sub")
    return crud.get_user_by_email(session=session, email=sub) if isinstance(sub, str) and sub else None


def _reject_during_maintenance(session: Session, user: User) -> None:
    admin_settings = load_admin_settings(session)
    if not admin_settings.maintenance_mode or is_admin(user):
        return
    detail: dict[str, Any] = {"detail": "Audisell is under maintenance. Please come back soon.", "maintenance": True}
    if admin_settings.maintenance_message:
        detail["message"] = admin_settings.maintenance_message
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


async def get_current_user(
    request: Request,
    session: Session = Depends(get_session),
    token: str = Depends(oauth2_scheme),
) -> User:
    try:
        claims = decode_access_token(token)
    except JWTError:
        raise _unauthorized()
    # Purpose-scoped tokens never authenticate API calls
    if claims.get("purpose"):
        raise _unauthorized()
    user = _user_from_claims(session, claims)
    if user is None:
        raise _unauthorized()
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This account is inactive.")

    _reject_during_maintenance(session, user)
    request.state.user_id = str(user.id)
    return user


def get_current_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")
    return current_user


def get_current_superadmin_user(current_user: User = Depends(get_current_user)) -> User:
    if get_user_role(current_user) != ROLE_SUPERADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This action requires superadmin privileges.")
    return current_user
