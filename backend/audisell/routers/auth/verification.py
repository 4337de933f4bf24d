"""Routes for email verification and password reset flows."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session

from audisell.core import crud
from audisell.core.auth import get_current_user
from audisell.core.config import settings
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.core.security import get_password_hash
from audisell.models.user import User
from audisell.models.verification import EmailVerification, PasswordReset
from audisell.services.mailer import mailer

from .credentials import send_verification_email
from .utils import request_meta

log = logging.getLogger(__name__)

router = APIRouter()

RESET_REQUEST_MESSAGE = "If an account exists for this email, a reset link has been sent."


class VerifyEmailPayload(BaseModel):
    token: str = Field(min_length=1)


class PasswordResetRequestPayload(BaseModel):
    email: EmailStr


class PasswordResetConfirmPayload(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


@router.post("/verify-email")
async def verify_email(payload: VerifyEmailPayload, session: Session = Depends(get_session)) -> dict:
    record = EmailVerification.redeemable(session, payload.token)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    user = session.get(User, record.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    record.consume()
    user.email_verified = True
    session.add(record)
    session.add(user)
    session.commit()
    log.info("event=auth.email_verified user=%s", user.id)
    return {"verified": True, "email": user.email}


@router.post("/verify-email/resend", dependencies=[Depends(rate_limited("password_reset"))])
async def resend_verification(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    if current_user.email_verified:
        return {"sent": False, "already_verified": True}
    send_verification_email(session, current_user)
    return {"sent": True, "already_verified": False}


@router.post("/password-reset/request", dependencies=[Depends(rate_limited("password_reset"))])
async def request_password_reset(
    request: Request,
    payload: PasswordResetRequestPayload,
    session: Session = Depends(get_session),
) -> dict:
    """Always answers 200 so the endpoint cannot be used to discover accounts."""
    user = crud.get_user_by_email(session=session, email=payload.email)
    if user is not None and user.is_active:
        ip, user_agent = request_meta(request)
        row, raw = PasswordReset.issue(
            user.id,
            timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
            ip=ip,
            user_agent=(user_agent or "")[:300] or None,
        )
        session.add(row)
        session.commit()
        link = f"{settings.APP_BASE_URL.rstrip('/')}/reset-password?token={raw}"
        mailer.send(
            user.email,
            "Redefinir senha / Reset your password",
            f"Use este link para redefinir sua senha: {link}\n\nUse this link to reset your password: {link}\n",
        )
        log.info("event=auth.password_reset_requested user=%s", user.id)
    return {"ok": True, "message": RESET_REQUEST_MESSAGE}


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    payload: PasswordResetConfirmPayload,
    session: Session = Depends(get_session),
) -> dict:
    record = PasswordReset.redeemable(session, payload.token)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    user = session.get(User, record.user_id)
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    user.hashed_password = get_password_hash(payload.new_password)
    record.consume()
    session.add(user)
    session.add(record)
    session.commit()
    log.info("event=auth.password_reset user=%s", user.id)
    return {"ok": True}
