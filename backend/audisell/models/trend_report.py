from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class TrendReport(SQLModel, table=True):
    """AI analysis of what users talked about in a period, with evolution vs the previous report."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    period_days: int = Field(index=True)
    period_start: datetime
    period_end: datetime
    carousels_analyzed: int = Field(default=0)
    report: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    evolution: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    tokens_used: int = Field(default=0)
    estimated_cost_usd: float = Field(default=0.0)
    created_by: Optional[UUID] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow, index=True)
