from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class StripeEvent(SQLModel, table=True):
    """Every webhook delivery we accepted; event_id makes redeliveries idempotent."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: str = Field(unique=True, index=True)
    event_type: str = Field(index=True)
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    processed: bool = Field(default=False, index=True)
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    processed_at: Optional[datetime] = Field(default=None)
