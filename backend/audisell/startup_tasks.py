from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime

from sqlmodel import Session, select

from audisell.billing import plans
from audisell.core import database
from audisell.core.clock import as_utc, utcnow
from audisell.core.logging import get_logger
from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.plan_config import PlanConfig
from audisell.models.prompt import AIPrompt
from audisell.services.prompts import DEFAULT_PROMPTS, category_for

log: logging.Logger = get_logger("audisell.startup_tasks")

STALE_PROCESSING_MINUTES = 30


@contextmanager
def _timing(label: str):
    start = time.time()
    try:
        yield
    finally:
        log.info("[startup] %s completed in %.2fs", label, time.time() - start)


def seed_plan_configs(session: Session) -> int:
    """Insert a ``planconfig`` row for every static tier that has none. Returns rows added."""
    existing = set(session.exec(select(PlanConfig.tier)).all())
    added = 0
    for tier in plans.PLAN_ORDER:
        if tier in existing:
            continue
        session.add(plans.plan_config_from_static(tier))
        added += 1
    if added:
        session.commit()
    return added


def seed_prompts(session: Session) -> int:
    existing = set(session.exec(select(AIPrompt.key)).all())
    added = 0
    for key, text in DEFAULT_PROMPTS.items():
        if key in existing:
            continue
        session.add(AIPrompt(key=key, name=key.replace("_", " ").title(), category=category_for(key), prompt=text))
        added += 1
    if added:
        session.commit()
    return added


def fail_stale_carousels(session: Session, now: datetime | None = None) -> int:
    """Mark carousels stuck mid-pipeline (worker died, deploy restart) as FAILED."""
    now = as_utc(now or utcnow())
    cutoff = now.timestamp() - STALE_PROCESSING_MINUTES * 60
    in_flight = (CarouselStatus.TRANSCRIBING, CarouselStatus.SCRIPTING, CarouselStatus.GENERATING)
    rows = session.exec(select(Carousel).where(Carousel.status.in_(in_flight))).all()  # type: ignore[attr-defined]
    failed = 0
    for carousel in rows:
        if as_utc(carousel.updated_at).timestamp() >= cutoff:
            continue
        carousel.status = CarouselStatus.FAILED
        carousel.error_message = "Processing was interrupted. Please try again."
        carousel.updated_at = now
        session.add(carousel)
        failed += 1
    if failed:
        session.commit()
    return failed


def run_startup_tasks() -> None:
    with _timing("create_db_and_tables"):
        database.create_db_and_tables()

    with database.session_scope() as session:
        with _timing("seed_plan_configs"):
            added = seed_plan_configs(session)
            if added:
                log.info("[startup] Seeded %d plan config row(s)", added)
        with _timing("seed_prompts"):
            added = seed_prompts(session)
            if added:
                log.info("[startup] Seeded %d prompt row(s)", added)
        with _timing("fail_stale_carousels"):
            failed = fail_stale_carousels(session)
            if failed:
                log.warning("[startup] Marked %d stale carousel(s) as FAILED", failed)
