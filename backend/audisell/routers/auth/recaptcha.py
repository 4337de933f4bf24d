from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from audisell.core.ip_utils import get_client_ip
from audisell.core.rate_limiter import rate_limited
from audisell.services.recaptcha import RecaptchaNotConfigured, verify_recaptcha

router = APIRouter()


class RecaptchaPayload(BaseModel):
    token: Optional[str] = None
    action: Optional[str] = None


@router.post("/recaptcha/verify", dependencies=[Depends(rate_limited("auth"))])
async def recaptcha_verify(request: Request, payload: RecaptchaPayload) -> dict:
    try:
        result = verify_recaptcha(payload.token, payload.action, remote_ip=get_client_ip(request))
    except RecaptchaNotConfigured:
        raise HTTPException(status_code=500, detail="reCAPTCHA not configured")
    if not result.success:
        raise HTTPException(status_code=403, detail={"detail": result.error, "score": result.score})
    return {"success": True, "score": result.score, "action": result.action}
