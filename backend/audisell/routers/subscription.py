from fastapi import APIRouter, Depends
from sqlmodel import Session

from audisell.core.auth import get_current_user
from audisell.core.database import get_session
from audisell.models.user import User
from audisell.services.subscriptions import SubscriptionState, resolve_subscription

router = APIRouter(tags=["billing"])


@router.get("/subscription", response_model=SubscriptionState)
def get_subscription(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Effective plan, limits and usage for the current limit period."""
    return resolve_subscription(session, current_user)
