from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class AIPrompt(SQLModel, table=True):
    """Admin-editable prompt text; active rows override the built-in defaults."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    key: str = Field(unique=True, index=True, max_length=80)
    name: Optional[str] = Field(default=None, max_length=120)
    category: str = Field(default="general", max_length=40)  # tone | mode | guardrails
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    is_active: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=utcnow)


class AIPromptUpdate(SQLModel):
    prompt: str = Field(min_length=1)
    name: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True
