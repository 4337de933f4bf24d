"""Password hashing for email/password accounts."""

import logging
from typing import Optional

from passlib.context import CryptContext

log = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12

_hasher = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
    bcrypt__min_rounds=BCRYPT_ROUNDS,
)


def get_password_hash(password: str) -> str:
    return _hasher.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return _hasher.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as exc:
        # Rows imported with a foreign hash format answer 401, not 500
        log.warning("event=auth.bad_hash error=%s prefix=%s", type(exc).__name__, hashed_password[:7])
        return False


def rehash_if_outdated(plain_password: str, hashed_password: str) -> Optional[str]:
    """New hash when the stored one uses weaker bcrypt settings, else None."""
    try:
        if _hasher.needs_update(hashed_password):
            return _hasher.hash(plain_password)
    except (ValueError, TypeError):
        return None
    return None
