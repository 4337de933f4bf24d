"""Deferred table creation, seeding and stale-job recovery on app start."""
from __future__ import annotations

import os
import threading
import time
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from fastapi import FastAPI

_TRUTHY = {"1", "true", "yes", "on"}

PENDING = "pending"
SKIPPED = "skipped"
RUNNING = "running"
DONE = "done"
FAILED = "failed"


def startup_mode() -> str:
    """``skip``, ``sync`` or ``thread`` from SKIP_STARTUP_MIGRATIONS / STARTUP_TASKS_MODE."""
    if (os.getenv("SKIP_STARTUP_MIGRATIONS") or "").lower() in _TRUTHY:
        return "skip"
    return "sync" if (os.getenv("STARTUP_TASKS_MODE") or "").lower() == "sync" else "thread"


def _run_and_record(app: FastAPI, tasks: Callable[[], None]) -> None:
    from audisell.core.logging import get_logger

    log = get_logger("audisell.config.startup")
    app.state.startup_phase = RUNNING
    began = time.monotonic()
    try:
        tasks()
    except Exception:
        app.state.startup_phase = FAILED
        log.exception("[startup] tasks failed after %.2fs", time.monotonic() - began)
        return
    app.state.startup_phase = DONE
    log.info("[startup] tasks finished in %.2fs", time.monotonic() - began)


def launch_startup_tasks(app: FastAPI) -> None:
    from audisell.core.logging import get_logger
    from audisell.startup_tasks import run_startup_tasks

    mode = startup_mode()
    if mode == "skip":
        app.state.startup_phase = SKIPPED
        get_logger("audisell.config.startup").warning("[startup] SKIP_STARTUP_MIGRATIONS set, nothing to do")
        return
    if mode == "sync":
        _run_and_record(app, run_startup_tasks)
        return
    threading.Thread(
        target=_run_and_record, args=(app, run_startup_tasks), name="startup-tasks", daemon=True
    ).start()


def register_startup(app: FastAPI) -> None:
    app.state.startup_phase = PENDING

    @app.on_event("startup")
    async def _startup_tasks():  # type: ignore
        launch_startup_tasks(app)
