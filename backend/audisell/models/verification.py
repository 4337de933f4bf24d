import hashlib
import secrets
from datetime import datetime, timedelta
from typing import ClassVar, Optional, Tuple, Type, TypeVar
from uuid import UUID, uuid4

from sqlmodel import Field, Session, SQLModel, select

from audisell.core.clock import as_utc, utcnow

T = TypeVar("T", bound="SingleUseToken")


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


class SingleUseToken(SQLModel):
    """Columns shared by mailed links. Only the SHA-256 of the raw token is stored."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    token_hash: str = Field(index=True, max_length=64)
    expires_at: datetime
    consumed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def issue(cls: Type[T], user_id: UUID, ttl: timedelta, **fields) -> Tuple[T, str]:
        raw = secrets.token_urlsafe(32)
        row = cls(user_id=user_id, token_hash=hash_token(raw), expires_at=utcnow() + ttl, **fields)
        return row, raw

    @classmethod
    def redeemable(cls: Type[T], session: Session, raw: str) -> Optional[T]:
        """The unexpired, unconsumed row for ``raw``, else None."""
        row = session.exec(select(cls).where(cls.token_hash == hash_token(raw))).first()
        if row is None or row.consumed_at is not None or as_utc(row.expires_at) < utcnow():
            return None
        return row

    def consume(self) -> None:
        self.consumed_at = utcnow()


class EmailVerification(SingleUseToken, table=True):
    __tablename__: ClassVar[str] = "emailverification"


class PasswordReset(SingleUseToken, table=True):
    __tablename__: ClassVar[str] = "passwordreset"
    ip: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=300)
