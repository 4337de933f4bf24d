"""Engine and session handling.

``engine`` is read as a module attribute at call time everywhere, so tests can
swap it for a throwaway SQLite engine.
"""
from contextlib import contextmanager
from typing import Iterator
import logging
import os
import time

from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, Session, create_engine

# Registers every table on SQLModel.metadata
from ..models import (  # noqa: F401
    broadcast,
    carousel,
    notification,
    plan_config,
    prompt,
    settings as settings_models,
    stripe_event,
    subscription,
    trend_report,
    usage,
    user,
    verification,
)
from .config import settings

log = logging.getLogger(__name__)

_POOL_ENV_DEFAULTS = {
    "pool_size": ("DB_POOL_SIZE", 10),
    "max_overflow": ("DB_MAX_OVERFLOW", 10),
    "pool_recycle": ("DB_POOL_RECYCLE", 1800),
    "pool_timeout": ("DB_POOL_TIMEOUT", 30),
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("[db] %s=%r is not an integer; using %s", name, raw, default)
        return default


def pool_settings() -> dict:
    """Pool options for PostgreSQL; connections are rolled back on checkin."""
    opts = {key: _env_int(env, default) for key, (env, default) in _POOL_ENV_DEFAULTS.items()}
    statement_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 300_000)
    opts.update(
        pool_pre_ping=True,
        pool_reset_on_return="rollback",
        connect_args={
            "connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10),
            "options": f"-c statement_timeout={statement_ms}",
        },
    )
    return opts


def build_engine(url: str | None = None):
    """Engine for ``url`` (default DATABASE_URL). SQLite for dev and tests, PostgreSQL otherwise."""
    raw = (url or settings.DATABASE_URL).strip()
    parsed = make_url(raw)
    dialect = parsed.get_backend_name()
    if dialect == "sqlite":
        log.info("[db] SQLite at %s", parsed.database or ":memory:")
        return create_engine(raw, connect_args={"check_same_thread": False})
    if dialect != "postgresql":
        raise RuntimeError(f"Unsupported database backend: {dialect}")
    log.info("[db] PostgreSQL %s@%s/%s", parsed.drivername, parsed.host, parsed.database)
    return create_engine(raw, **pool_settings())


engine = build_engine()


def wait_for_database(attempts: int = 5, first_delay: float = 0.5, max_delay: float = 5.0) -> None:
    """Ping with exponential backoff; re-raises the last OperationalError."""
    delay = first_delay
    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return
        except OperationalError as exc:
            if attempt == attempts:
                log.error("[db] giving up after %d attempts: %s", attempts, exc)
                raise
            log.warning("[db] attempt %d/%d failed (%s); retry in %.1fs", attempt, attempts, exc, delay)
            time.sleep(delay)
            delay = min(delay * 2, max_delay)


def create_db_and_tables() -> None:
    wait_for_database()
    SQLModel.metadata.create_all(engine)


def _close(session: Session) -> None:
    if session.in_transaction():
        session.rollback()
    session.close()


def get_session() -> Iterator[Session]:
    """FastAPI dependency. Uncommitted work is rolled back when the request ends."""
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        _close(session)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for workers and background code; callers commit explicitly."""
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    finally:
        _close(session)
