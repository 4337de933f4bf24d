import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from audisell.core.auth import get_current_admin_user
from audisell.models.user import User
from audisell.services.translation import translate_text

log = logging.getLogger(__name__)

router = APIRouter(tags=["translation"])


class TranslateRequest(BaseModel):
    text: str = ""
    target_language: Literal["en", "es"]
    context: Literal["faq", "testimonial", "landing_page"] = "landing_page"


@router.post("/translate")
def translate(payload: TranslateRequest, admin_user: User = Depends(get_current_admin_user)):
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="No text provided")
    try:
        translated = translate_text(payload.text, payload.target_language, payload.context)
    except RuntimeError as exc:
        log.warning("event=translation.failed admin=%s error=%s", admin_user.id, exc)
        raise HTTPException(status_code=502, detail="Translation failed")
    return {"translated_text": translated}
