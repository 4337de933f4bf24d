"""Routes handling credential-based authentication flows."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr
from sqlmodel import Session

from audisell.core import crud
from audisell.core.auth import get_current_user, is_admin_email
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.models.settings import load_admin_settings
from audisell.models.user import User, UserCreate, UserPublic, UserUpdate
from audisell.models.verification import EmailVerification
from audisell.services.auth_audit import log_auth_attempt
from audisell.services.mailer import mailer

from .utils import (
    check_credentials,
    issue_token,
    request_meta,
    require_human,
    to_user_public,
    touch_last_login,
)

log = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_PREFERENCE_KEYS = {"language", "tone", "text_mode", "template", "format", "style"}


class UserRegisterPayload(UserCreate):
    recaptcha_token: Optional[str] = None


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserPublic
    requires_verification: bool = False


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


def send_verification_email(session: Session, user: User) -> str:
    """Create a verification token for ``user`` and mail the link. Returns the raw token."""
    row, raw = EmailVerification.issue(user.id, timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS))
    session.add(row)
    session.commit()
    link = f"{settings.APP_BASE_URL.rstrip('/')}/verify-email?token={raw}"
    mailer.send(
        user.email,
        "Confirme seu e-mail / Confirm your email",
        f"Olá! Confirme seu e-mail no Audisell: {link}\n\nHi! Confirm your Audisell email: {link}\n",
    )
    return raw


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited("auth"))],
)
async def register_user(
    request: Request,
    user_in: UserRegisterPayload,
    session: Session = Depends(get_session),
) -> AuthResponse:
    """Register a new user with email and password."""
    if not load_admin_settings(session).signups_enabled and not is_admin_email(user_in.email):
        raise HTTPException(status_code=403, detail="Signups are currently disabled.")
    require_human(session, user_in.recaptcha_token, "signup", request)

    if crud.get_user_by_email(session=session, email=user_in.email):
        raise HTTPException(status_code=400, detail="A user with this email already exists.")

    extra: dict[str, Any] = {"plan_tier": "free"}
    if is_admin_email(user_in.email):
        extra.update(role="superadmin", is_admin=True)
    base_user = UserCreate(**user_in.model_dump(exclude={"recaptcha_token"}))
    user = crud.create_user(session=session, user_create=base_user, **extra)
    log.info("event=auth.registered user=%s admin=%s", user.id, bool(extra.get("is_admin")))

    send_verification_email(session, user)
    return AuthResponse(**issue_token(user), user=to_user_public(user), requires_verification=True)


def _authenticate(session: Session, request: Request, email: str, password: str) -> User:
    ip, user_agent = request_meta(request)
    user = crud.get_user_by_email(session=session, email=email)
    if not check_credentials(user, password):
        log_auth_attempt(
            session, email, False, ip,
            user_id=user.id if user else None,
            reason="invalid_credentials",
            user_agent=user_agent,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        log_auth_attempt(session, email, False, ip, user_id=user.id, reason="inactive", user_agent=user_agent)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This account is inactive.")

    log_auth_attempt(session, email, True, ip, user_id=user.id, user_agent=user_agent)
    touch_last_login(session, user, password)
    return user


@router.post("/token", dependencies=[Depends(rate_limited("auth"))])
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
) -> dict:
    """OAuth2 password flow (``username`` carries the email)."""
    user = _authenticate(session, request, form_data.username, form_data.password)
    return issue_token(user)


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(rate_limited("auth"))])
async def login_json(
    request: Request,
    payload: LoginPayload,
    session: Session = Depends(get_session),
) -> AuthResponse:
    user = _authenticate(session, request, payload.email, payload.password)
    return AuthResponse(**issue_token(user), user=to_user_public(user))


@router.get("/me", response_model=UserPublic)
async def read_me(current_user: User = Depends(get_current_user)) -> UserPublic:
    return to_user_public(current_user)


@router.patch("/me", response_model=UserPublic)
async def update_me(
    payload: UserUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> UserPublic:
    data = payload.model_dump(exclude_unset=True)
    if "full_name" in data:
        current_user.full_name = data["full_name"]
    if "instagram_handle" in data:
        handle = (data["instagram_handle"] or "").strip().lstrip("@")
        current_user.instagram_handle = handle or None
    if data.get("preferences") is not None:
        unknown = set(data["preferences"]) - ALLOWED_PREFERENCE_KEYS
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown preference keys: {', '.join(sorted(unknown))}")
        current_user.preferences = {**(current_user.preferences or {}), **data["preferences"]}
    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    return to_user_public(current_user)
