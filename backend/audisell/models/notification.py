from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class NotificationType(str, Enum):
    info = "info"
    carousel_ready = "carousel_ready"
    carousel_failed = "carousel_failed"
    subscription = "subscription"
    subscription_cancelled = "subscription_cancelled"
    payment_failed = "payment_failed"
    payment_failed_final = "payment_failed_final"
    announcement = "announcement"
    daily_summary = "daily_summary"
    re_engagement = "re_engagement"
    subscription_expiring = "subscription_expiring"


class Notification(SQLModel, table=True):
    """In-app message shown in the bell menu. Bodies are bilingual (pt-BR / en)."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    type: str = Field(default=NotificationType.info.value, index=True, max_length=40)
    title: str = Field(max_length=200)
    body: Optional[str] = None
    # Set for carousel_ready / carousel_failed so the client can deep-link
    carousel_id: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    read_at: Optional[datetime] = Field(default=None, index=True)


class NotificationPublic(SQLModel):
    id: UUID
    type: str
    title: str
    body: Optional[str] = None
    carousel_id: Optional[UUID] = None
    created_at: datetime
    read_at: Optional[datetime] = None
