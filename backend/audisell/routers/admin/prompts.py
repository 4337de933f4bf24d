from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from audisell.core.clock import utcnow
from audisell.core.database import get_session
from audisell.models.prompt import AIPrompt, AIPromptUpdate
from audisell.models.user import User
from audisell.services import prompts as prompt_service

from .deps import get_current_admin_user

router = APIRouter()
log = logging.getLogger(__name__)


def _row(session: Session, key: str) -> AIPrompt | None:
    return session.exec(select(AIPrompt).where(AIPrompt.key == key)).first()


def _require_known(key: str) -> None:
    if key not in prompt_service.DEFAULT_PROMPTS:
        raise HTTPException(status_code=404, detail=f"Unknown prompt key: {key}")


@router.get("")
def list_prompts(
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> List[Dict[str, Any]]:
    """Every known prompt with its effective text and whether an override is active."""
    del admin_user
    rows = {r.key: r for r in session.exec(select(AIPrompt)).all()}
    out = []
    for key, default in prompt_service.DEFAULT_PROMPTS.items():
        row = rows.get(key)
        custom = row is not None and row.is_active and row.prompt != default
        out.append({
            "key": key,
            "name": row.name if row is not None else None,
            "category": prompt_service.category_for(key),
            "prompt": row.prompt if (row is not None and row.is_active) else default,
            "default_prompt": default,
            "is_custom": custom,
            "updated_at": row.updated_at if row is not None else None,
        })
    return out


@router.put("/{key}", response_model=AIPrompt)
def upsert_prompt(
    key: str,
    payload: AIPromptUpdate,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    _require_known(key)
    row = _row(session, key) or AIPrompt(key=key, category=prompt_service.category_for(key), prompt=payload.prompt)
    row.prompt = payload.prompt
    row.is_active = payload.is_active
    if payload.name is not None:
        row.name = payload.name
    if payload.category is not None:
        row.category = payload.category
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    session.refresh(row)
    prompt_service.clear_prompt_cache()
    log.info("event=admin.prompt_updated admin=%s key=%s active=%s", admin_user.id, key, row.is_active)
    return row


@router.delete("/{key}")
def reset_prompt(
    key: str,
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
):
    """Drop the override so the built-in text applies again."""
    _require_known(key)
    row = _row(session, key)
    if row is not None:
        session.delete(row)
        session.commit()
    prompt_service.clear_prompt_cache()
    log.info("event=admin.prompt_reset admin=%s key=%s", admin_user.id, key)
    return {"ok": True, "key": key}
