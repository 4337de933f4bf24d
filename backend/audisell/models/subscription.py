from sqlmodel import SQLModel, Field
from datetime import datetime
from uuid import UUID, uuid4
from typing import Optional

from audisell.core.clock import utcnow


class Subscription(SQLModel, table=True):
    """Local mirror of the user's Stripe subscription (one row per user)."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True, unique=True)
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, index=True)
    plan_tier: str = Field(default="free")
    price_id: Optional[str] = Field(default=None)
    status: str = Field(default="incomplete")  # active, trialing, past_due, cancelled, incomplete
    current_period_start: Optional[datetime] = Field(default=None)
    current_period_end: Optional[datetime] = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)
    cancelled_at: Optional[datetime] = Field(default=None)
    scheduled_downgrade_tier: Optional[str] = Field(default=None)
    failed_payment_count: int = Field(default=0)
    last_payment_failed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SubscriptionPublic(SQLModel):
    plan_tier: str
    status: str
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    cancelled_at: Optional[datetime] = None
    failed_payment_count: int = 0


class ManualSubscription(SQLModel, table=True):
    """Admin-granted plan access that bypasses Stripe (partners, support credits)."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    plan_tier: str
    custom_daily_limit: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = Field(default=None, max_length=300)
    granted_by: Optional[UUID] = Field(default=None, foreign_key="user.id")
    is_active: bool = Field(default=True, index=True)
    expires_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
