from sqlmodel import select

from audisell import startup_tasks
from audisell.models.plan_config import PlanConfig
from audisell.models.prompt import AIPrompt
from audisell.services.prompts import DEFAULT_PROMPTS


def test_seed_plan_configs_is_idempotent(session):
    session.add(PlanConfig(tier="creator", name="Creator custom", daily_limit=12))
    session.commit()

    assert startup_tasks.seed_plan_configs(session) == 3
    assert startup_tasks.seed_plan_configs(session) == 0

    rows = {r.tier: r for r in session.exec(select(PlanConfig)).all()}
    assert set(rows) == {"free", "starter", "creator", "agency"}
    assert rows["creator"].daily_limit == 12
    assert rows["free"].has_watermark is True


def test_seed_prompts_keeps_existing_overrides(session):
    session.add(AIPrompt(key="mode_single", category="mode", prompt="custom"))
    session.commit()

    assert startup_tasks.seed_prompts(session) == len(DEFAULT_PROMPTS) - 1
    row = session.exec(select(AIPrompt).where(AIPrompt.key == "mode_single")).one()
    assert row.prompt == "custom"
    seeded = session.exec(select(AIPrompt).where(AIPrompt.key == "tone_emotional")).one()
    assert seeded.category == "tone"
    assert seeded.name == "Tone Emotional"


def test_run_startup_tasks_uses_current_engine(db_engine, session):
    startup_tasks.run_startup_tasks()
    assert len(session.exec(select(PlanConfig)).all()) == 4
    assert len(session.exec(select(AIPrompt)).all()) == len(DEFAULT_PROMPTS)


def test_sync_startup_runs_on_app_start(db_engine, media_root, monkeypatch, session):
    from importlib import import_module

    from fastapi.testclient import TestClient

    monkeypatch.setenv("SKIP_STARTUP_MIGRATIONS", "0")
    monkeypatch.setenv("STARTUP_TASKS_MODE", "sync")
    app = import_module("audisell.main").create_app(fresh=True)
    with TestClient(app) as tc:
        assert tc.get("/readyz").json()["startup"] == "done"
    assert len(session.exec(select(PlanConfig)).all()) == 4


def test_startup_failure_is_reported_by_readiness(db_engine, media_root, monkeypatch):
    from importlib import import_module

    from fastapi.testclient import TestClient

    def _boom():
        raise RuntimeError("seed failed")

    monkeypatch.setenv("SKIP_STARTUP_MIGRATIONS", "0")
    monkeypatch.setenv("STARTUP_TASKS_MODE", "sync")
    monkeypatch.setattr(startup_tasks, "run_startup_tasks", _boom)
    app = import_module("audisell.main").create_app(fresh=True)
    with TestClient(app) as tc:
        assert tc.get("/readyz").json() == {"ok": True, "startup": "failed"}
