import logging
from datetime import datetime
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, Field as PydanticField, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel

from audisell.core.clock import utcnow

logger = logging.getLogger(__name__)

ADMIN_SETTINGS_KEY = "admin_settings"
FEATURE_FLAGS_KEY = "feature_flags"


class AppSetting(SQLModel, table=True):
    """One JSON document per well-known key (``admin_settings``, ``feature_flags``)."""

    key: str = Field(primary_key=True, index=True)
    value_json: str = Field(default="{}")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AdminSettings(BaseModel):
    # Non-admin API calls answer 503 with maintenance_message while on
    maintenance_mode: bool = False
    maintenance_message: Optional[str] = None
    signups_enabled: bool = True
    default_language: str = "pt-BR"
    # Recorder hint sent to clients
    max_audio_seconds: int = PydanticField(default=300, ge=10, le=3600)


class FeatureFlags(BaseModel):
    recaptcha_enabled: bool = False
    retention_offer_enabled: bool = True
    trends_enabled: bool = True
    story_format_enabled: bool = True


_M = TypeVar("_M", bound=BaseModel)


def _load(session: Session, key: str, model: Type[_M]) -> _M:
    """Stored value for ``key``, or the model defaults when absent or unreadable."""
    try:
        row = session.get(AppSetting, key)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("event=settings.load_failed key=%s err=%s", key, exc)
        return model()
    if row is None:
        return model()
    try:
        return model.model_validate_json(row.value_json or "{}")
    except ValidationError as exc:
        logger.warning("event=settings.invalid key=%s errors=%d; using defaults", key, exc.error_count())
        return model()


def _save(session: Session, key: str, value: BaseModel) -> None:
    row = session.get(AppSetting, key) or AppSetting(key=key)
    row.value_json = value.model_dump_json()
    row.updated_at = utcnow()
    session.add(row)
    session.commit()


def load_admin_settings(session: Session) -> AdminSettings:
    return _load(session, ADMIN_SETTINGS_KEY, AdminSettings)


def save_admin_settings(session: Session, settings: AdminSettings) -> AdminSettings:
    _save(session, ADMIN_SETTINGS_KEY, settings)
    return load_admin_settings(session)


def load_feature_flags(session: Session) -> FeatureFlags:
    return _load(session, FEATURE_FLAGS_KEY, FeatureFlags)


def save_feature_flags(session: Session, flags: FeatureFlags) -> FeatureFlags:
    _save(session, FEATURE_FLAGS_KEY, flags)
    return load_feature_flags(session)
