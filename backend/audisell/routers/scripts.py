import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from audisell.core.auth import get_current_user, is_admin
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.models.carousel import CreativeTone, SlideCountMode, Template, TextMode
from audisell.models.user import User
from audisell.services.scripts import generate_script
from audisell.services.subscriptions import effective_plan

log = logging.getLogger(__name__)

router = APIRouter(prefix="/scripts", tags=["scripts"])


class ScriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transcription: str = Field(min_length=1, max_length=20000)
    text_mode: TextMode = Field(default=TextMode.compact, alias="textMode")
    creative_tone: CreativeTone = Field(default=CreativeTone.professional, alias="creativeTone")
    slide_count: int = Field(default=6, ge=1, le=12, alias="slideCount")
    slide_count_mode: SlideCountMode = Field(default=SlideCountMode.auto, alias="slideCountMode")
    template: Template = Template.solid
    language: str = Field(default="pt-BR", max_length=10)


@router.post("/generate", dependencies=[Depends(rate_limited("script_generation"))])
def generate(
    payload: ScriptRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if not is_admin(current_user) and payload.template.value not in effective_plan(session, current_user)["templates"]:
        raise HTTPException(status_code=403, detail=f"Template '{payload.template.value}' is not available on your plan")
    try:
        script = generate_script(
            payload.transcription,
            text_mode=payload.text_mode.value,
            creative_tone=payload.creative_tone.value,
            slide_count=payload.slide_count,
            slide_count_mode=payload.slide_count_mode.value,
            template=payload.template.value,
            language=payload.language,
            user_id=current_user.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RuntimeError as exc:
        code = str(exc)
        log.warning("event=script.generation_failed user=%s error=%s", current_user.id, code)
        if code == "GEMINI_RATE_LIMIT_EXCEEDED":
            raise HTTPException(status_code=429, detail="AI rate limit reached. Please try again shortly.")
        raise HTTPException(status_code=502, detail="Script generation failed")
    return {"script": script}
