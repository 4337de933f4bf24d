from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from audisell.billing import plans as plan_catalogue
from audisell.core.clock import utcnow
from audisell.core.database import get_session
from audisell.models.plan_config import PlanConfig, PlanConfigUpdate
from audisell.models.user import User

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


@router.get("")
def list_plan_configs(
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> List[Dict[str, Any]]:
    """Configured plans in display order; tiers without a row show the static values."""
    del admin_user
    rows = {r.tier: r for r in session.exec(select(PlanConfig)).all()}
    out = []
    for tier in plan_catalogue.PLAN_ORDER:
        row = rows.get(tier) or plan_catalogue.plan_config_from_static(tier)
        out.append({"tier": tier, "configured": tier in rows, **row.model_dump(exclude={"id", "tier"})})
    return out


@router.put("/{tier}", response_model=PlanConfig)
def update_plan_config(
    tier: str,
    payload: PlanConfigUpdate,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    tier = tier.strip().lower()
    if tier not in plan_catalogue.PLANS:
        raise HTTPException(status_code=404, detail=f"Unknown plan tier: {tier}")
    row = session.exec(select(PlanConfig).where(PlanConfig.tier == tier)).first()
    if row is None:
        row = plan_catalogue.plan_config_from_static(tier)
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(row, field, value)
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    session.refresh(row)
    log.info("event=admin.plan_updated admin=%s tier=%s fields=%s", admin_user.id, tier, sorted(changes))
    return row
