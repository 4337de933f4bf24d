from typing import List, Optional
from uuid import UUID

from sqlalchemy import desc
from sqlmodel import Session, func, select

from .security import get_password_hash
from ..models.carousel import Carousel
from ..models.user import User, UserCreate

# --- User CRUD ---

def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    statement = select(User).where(func.lower(User.email) == normalize_email(email))
    return session.exec(statement).first()


def get_user_by_id(session: Session, user_id: UUID) -> Optional[User]:
    return session.get(User, user_id)


def create_user(session: Session, user_create: UserCreate, **extra) -> User:
    hashed_password = get_password_hash(user_create.password)
    data = user_create.model_dump(exclude={"password"})
    data["email"] = normalize_email(data["email"])
    data.update(extra)
    db_user = User(**data, hashed_password=hashed_password)
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user


# --- Carousel CRUD ---

def get_carousel_for_user(session: Session, carousel_id: UUID, user_id: UUID) -> Optional[Carousel]:
    carousel = session.get(Carousel, carousel_id)
    if carousel is None or carousel.user_id != user_id:
        return None
    return carousel


def list_carousels_for_user(session: Session, user_id: UUID, limit: Optional[int] = None) -> List[Carousel]:
    statement = (
        select(Carousel)
        .where(Carousel.user_id == user_id)
        .order_by(desc(Carousel.created_at))
    )
    if limit is not None:
        statement = statement.limit(limit)
    return list(session.exec(statement).all())
