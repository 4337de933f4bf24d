from datetime import date as date_type, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class ApiName(str, Enum):
    whisper = "whisper"
    gemini = "gemini"


class UsageAction(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILED = "auth_failed"
    SUSPICIOUS_AUTH = "suspicious_auth_activity"
    SECURITY_EVENT = "security_event"
    CAROUSEL_CREATED = "carousel_created"
    CAROUSEL_FAILED = "carousel_failed"
    CLEANUP_OLD_IMAGES = "cleanup_old_images"
    ACCOUNT_EXPORTED = "account_exported"


class DailyUsage(SQLModel, table=True):
    """Carousels created per user per UTC day; the quota counter."""
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_dailyusage_user_date"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    date: date_type = Field(index=True)
    carousels_created: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)


class ApiUsage(SQLModel, table=True):
    """One outbound AI call, for cost reporting."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, foreign_key="user.id", index=True)
    carousel_id: Optional[UUID] = Field(default=None, index=True)
    action: str = Field(max_length=60)
    api_name: ApiName = Field(index=True)
    audio_seconds: Optional[float] = Field(default=None)
    tokens_input: Optional[int] = Field(default=None)
    tokens_output: Optional[int] = Field(default=None)
    estimated_cost_usd: Optional[float] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)


class UsageLog(SQLModel, table=True):
    """Audit trail for auth attempts, security events and maintenance jobs."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, index=True)
    action: str = Field(index=True, max_length=60)
    status: str = Field(default="success", max_length=20)
    error_message: Optional[str] = Field(default=None)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    ip_address: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utcnow, index=True)
