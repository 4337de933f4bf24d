import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from audisell.core.auth import get_current_user
from audisell.core.clock import utcnow
from audisell.core.database import get_session
from audisell.core.rate_limiter import rate_limited
from audisell.models.usage import UsageAction
from audisell.models.user import User
from audisell.services.account import delete_account, export_user_data
from audisell.services.usage import log_usage_event

log = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["account"])


class DeleteAccountRequest(BaseModel):
    confirmation: str


@router.get("/export", dependencies=[Depends(rate_limited("export_data"))])
def export_account(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Download everything stored about the caller as a JSON attachment."""
    data = export_user_data(session, current_user)
    log_usage_event(session, UsageAction.ACCOUNT_EXPORTED.value, user_id=current_user.id)
    filename = f"audisell-export-{utcnow().strftime('%Y%m%d')}.json"
    return JSONResponse(content=data, headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.post("/delete")
def delete_my_account(
    payload: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if payload.confirmation.strip().lower() != current_user.email.lower():
        raise HTTPException(
            status_code=400,
            detail={"detail": "Type your email address to confirm the deletion", "code": "confirmation_required"},
        )
    counts = delete_account(session, current_user)
    return {"deleted": True, "counts": counts}
