"""Admin-editable app settings and feature flags.

PUT bodies may be partial: omitted fields keep their stored values.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Type, TypeVar

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from audisell.core.database import get_session
from audisell.models.settings import (
    AdminSettings,
    FeatureFlags,
    load_admin_settings,
    load_feature_flags,
    save_admin_settings,
    save_feature_flags,
)
from audisell.models.user import User

from .deps import get_current_admin_user

router = APIRouter(dependencies=[Depends(get_current_admin_user)])
log = logging.getLogger(__name__)

_S = TypeVar("_S", bound=BaseModel)


def _merge(current: _S, changes: dict[str, Any], model: Type[_S]) -> _S:
    unknown = sorted(set(changes) - set(model.model_fields))
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown fields: {', '.join(unknown)}")
    try:
        return model.model_validate({**current.model_dump(), **changes})
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        raise HTTPException(status_code=422, detail=f"Invalid value ({problems})")


def _apply(
    session: Session,
    changes: dict[str, Any],
    model: Type[_S],
    load: Callable[[Session], _S],
    save: Callable[[Session, _S], _S],
) -> _S:
    return save(session, _merge(load(session), changes, model))


@router.get("/settings", response_model=AdminSettings)
def get_admin_settings(session: Session = Depends(get_session)) -> AdminSettings:
    return load_admin_settings(session)


@router.put("/settings", response_model=AdminSettings)
def update_admin_settings(
    changes: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> AdminSettings:
    saved = _apply(session, changes, AdminSettings, load_admin_settings, save_admin_settings)
    log.info("event=admin.settings_updated admin=%s fields=%s", admin_user.id, sorted(changes))
    return saved


@router.get("/feature-flags", response_model=FeatureFlags)
def get_feature_flags(session: Session = Depends(get_session)) -> FeatureFlags:
    return load_feature_flags(session)


@router.put("/feature-flags", response_model=FeatureFlags)
def update_feature_flags(
    changes: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    admin_user: User = Depends(get_current_admin_user),
) -> FeatureFlags:
    saved = _apply(session, changes, FeatureFlags, load_feature_flags, save_feature_flags)
    log.info("event=admin.feature_flags_updated admin=%s changes=%s", admin_user.id, changes)
    return saved
