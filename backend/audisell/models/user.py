from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import EmailStr
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class UserBase(SQLModel):
    """Base model with shared fields."""
    email: EmailStr = Field(unique=True, index=True)
    full_name: Optional[str] = Field(default=None, max_length=160)
    is_active: bool = True


class User(UserBase, table=True):
    """The database model for a User (account plus profile data)."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    hashed_password: str
    # Role is for admin access and is distinct from plan_tier, which is for billing
    role: Optional[str] = Field(default=None, max_length=50, description="'admin', 'superadmin', or None")
    is_admin: bool = Field(default=False)
    email_verified: bool = Field(default=False)
    plan_tier: str = Field(default="free", max_length=20, index=True)
    preferences: Optional[dict] = Field(
        default=None,
        sa_column=Column(JSON),
        description="language, default tone/text_mode/template/format",
    )
    instagram_handle: Optional[str] = Field(default=None, max_length=60)
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    retention_offer_used_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    last_login_at: Optional[datetime] = Field(default=None)


class UserCreate(UserBase):
    """Model used for creating a new user via the API."""
    password: str = Field(min_length=8, max_length=128)


class UserUpdate(SQLModel):
    full_name: Optional[str] = Field(default=None, max_length=160)
    instagram_handle: Optional[str] = Field(default=None, max_length=60)
    preferences: Optional[dict[str, Any]] = None


class UserPublic(UserBase):
    """Model used for returning user data from the API (no password hash)."""
    id: UUID
    role: Optional[str] = None
    is_admin: bool = False
    email_verified: bool = False
    plan_tier: str = "free"
    preferences: Optional[dict] = None
    instagram_handle: Optional[str] = None
    created_at: datetime
    last_login_at: Optional[datetime] = None
