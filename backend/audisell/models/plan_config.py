from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class LimitPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class PlanConfigBase(SQLModel):
    name: str
    daily_limit: int = Field(default=1, ge=0)
    monthly_limit: Optional[int] = Field(default=None, ge=0)
    limit_period: LimitPeriod = Field(default=LimitPeriod.daily)
    price_brl: int = Field(default=0, ge=0, description="Monthly price in cents")
    price_usd: Optional[int] = Field(default=None, ge=0)
    price_eur: Optional[int] = Field(default=None, ge=0)
    stripe_price_id_brl: Optional[str] = None
    stripe_price_id_usd: Optional[str] = None
    stripe_price_id_eur: Optional[str] = None
    checkout_link_brl: Optional[str] = None
    checkout_link_usd: Optional[str] = None
    checkout_link_eur: Optional[str] = None
    has_watermark: bool = False
    has_editor: bool = False
    has_history: bool = False
    has_zip_download: bool = False
    has_custom_fonts: bool = False
    has_gradients: bool = False
    has_slide_images: bool = False
    is_active: bool = True


class PlanConfig(PlanConfigBase, table=True):
    """Admin-editable plan limits, prices and Stripe wiring; overrides the static catalogue."""
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    tier: str = Field(unique=True, index=True, max_length=20)
    updated_at: datetime = Field(default_factory=utcnow)


class PlanConfigUpdate(SQLModel):
    name: Optional[str] = None
    daily_limit: Optional[int] = Field(default=None, ge=0)
    monthly_limit: Optional[int] = Field(default=None, ge=0)
    limit_period: Optional[LimitPeriod] = None
    price_brl: Optional[int] = Field(default=None, ge=0)
    price_usd: Optional[int] = Field(default=None, ge=0)
    price_eur: Optional[int] = Field(default=None, ge=0)
    stripe_price_id_brl: Optional[str] = None
    stripe_price_id_usd: Optional[str] = None
    stripe_price_id_eur: Optional[str] = None
    checkout_link_brl: Optional[str] = None
    checkout_link_usd: Optional[str] = None
    checkout_link_eur: Optional[str] = None
    has_watermark: Optional[bool] = None
    has_editor: Optional[bool] = None
    has_history: Optional[bool] = None
    has_zip_download: Optional[bool] = None
    has_custom_fonts: Optional[bool] = None
    has_gradients: Optional[bool] = None
    has_slide_images: Optional[bool] = None
    is_active: Optional[bool] = None
