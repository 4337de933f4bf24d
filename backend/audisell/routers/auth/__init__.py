"""Authentication router package aggregating credential, verification and reCAPTCHA flows."""

from fastapi import APIRouter

from .credentials import router as credentials_router
from .recaptcha import router as recaptcha_router
from .verification import router as verification_router

router = APIRouter(prefix="/auth", tags=["Authentication"])
for subrouter in (credentials_router, verification_router, recaptcha_router):
    router.include_router(subrouter)

__all__ = ["router"]
