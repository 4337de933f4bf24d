from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class BroadcastKind(str, Enum):
    notification = "notification"
    email = "email"


class BroadcastStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"


class BroadcastJob(SQLModel, table=True):
    """Admin announcement sent to every user on the targeted plans, in batches."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    kind: str = Field(default=BroadcastKind.notification.value, max_length=20)
    status: str = Field(default=BroadcastStatus.pending.value, index=True, max_length=20)
    title: str = Field(max_length=200)
    body: str
    email_subject: Optional[str] = Field(default=None, max_length=200)
    target_plans: Optional[list] = Field(default=None, sa_column=Column(JSON))
    target_all_users: bool = Field(default=False)
    total_recipients: int = Field(default=0)
    success_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    created_by: Optional[UUID] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow, index=True)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failed_count


class BroadcastRecipient(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="broadcastjob.id", index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    email: str = Field(max_length=320)
    # pending -> sent | failed
    status: str = Field(default="pending", index=True, max_length=20)
    error_message: Optional[str] = Field(default=None, max_length=500)
    sent_at: Optional[datetime] = None


class BroadcastCreate(SQLModel):
    kind: BroadcastKind = BroadcastKind.notification
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1, max_length=5000)
    email_subject: Optional[str] = Field(default=None, max_length=200)
    target_plans: List[str] = Field(default_factory=list)
    target_all_users: bool = False


class BroadcastPublic(SQLModel):
    id: UUID
    kind: str
    status: str
    title: str
    body: str
    email_subject: Optional[str] = None
    target_plans: Optional[list] = None
    target_all_users: bool
    total_recipients: int
    success_count: int
    failed_count: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
