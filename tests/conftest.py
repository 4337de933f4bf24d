import os
import re
from datetime import timedelta
from importlib import import_module
from pathlib import Path
from typing import Optional

import pytest
import requests_mock


@pytest.fixture(scope="function")
def db_engine(tmp_path: Path):
    """Provide a temporary SQLite engine with all tables created.

    Usage:
    - Inject into tests that touch the DB; the API transparently uses this engine
      via the `audisell.core.database.get_session` dependency.
    - `session_scope()` users (pipeline, notifications, prompts) see it too.

    Notes:
    - We patch `audisell.core.database.engine` in-place so every code path that
      reads the module attribute picks up the new engine.
    """
    from sqlmodel import create_engine
    db_path = tmp_path / "test.db"
    engine_url = f"sqlite:///{db_path.as_posix()}"

    db = import_module("audisell.core.database")
    old_engine = getattr(db, "engine")
    new_engine = create_engine(engine_url, echo=False, connect_args={"check_same_thread": False})
    setattr(db, "engine", new_engine)

    db.create_db_and_tables()

    try:
        yield new_engine
    finally:
        setattr(db, "engine", old_engine)
        new_engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state():
    """Clear in-process caches that would otherwise leak between tests."""
    from audisell.core.rate_limiter import reset_memory_store
    from audisell.services.mailer import mailer
    from audisell.services.prompts import clear_prompt_cache
    from audisell.services.task_dispatcher import dispatcher

    reset_memory_store()
    clear_prompt_cache()
    dispatcher.reset()
    mailer.outbox.clear()
    yield
    clear_prompt_cache()


@pytest.fixture(scope="function")
def media_root(tmp_path: Path, monkeypatch):
    """Point storage at a per-test MEDIA_ROOT."""
    from audisell.core.config import settings
    root = tmp_path / "media"
    root.mkdir()
    monkeypatch.setattr(settings, "MEDIA_ROOT", str(root))
    return root


@pytest.fixture(scope="function")
def app(db_engine, media_root):
    """FastAPI app instance wired to the temporary DB engine.

    Usage:
    - Use together with `client` to issue HTTP calls against the API.
    - Example:
        def test_health_ok(client):
            r = client.get("/api/health")
            assert r.status_code == 200
    """
    main = import_module("audisell.main")
    return main.create_app(fresh=True)


@pytest.fixture(scope="function")
def session(db_engine):
    """Database session bound to the temporary test engine."""
    from sqlmodel import Session as SQLSession
    with SQLSession(db_engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture(scope="function")
def client(app):
    """Synchronous FastAPI TestClient bound to the temp DB."""
    from fastapi.testclient import TestClient
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def make_user(session):
    """Factory creating a user row directly (no HTTP round trip).

    Example:
        def test_x(make_user):
            user = make_user("ana@example.com", plan_tier="creator")
    """
    from audisell.core.security import get_password_hash
    from audisell.models.user import User

    def _make(email: str = "user@example.com", password: str = "correct-horse", **fields):
        user = User(email=email, hashed_password=get_password_hash(password), **fields)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    """Build a bearer header for ``user`` the same way login does."""
    from audisell.core.auth import create_access_token

    def _headers(user) -> dict:
        token = create_access_token({"sub": user.email, "uid": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def subscribe(session):
    """Give ``user`` an active Stripe-mirrored subscription on ``tier``."""
    from audisell.core.clock import utcnow
    from audisell.models.subscription import Subscription

    def _subscribe(user, tier: str = "creator", status: str = "active", days_left: int = 20, **fields):
        now = utcnow()
        sub = Subscription(
            user_id=user.id,
            stripe_customer_id=fields.pop("stripe_customer_id", "cus_test"),
            stripe_subscription_id=fields.pop("stripe_subscription_id", "sub_test"),
            plan_tier=tier,
            status=status,
            current_period_start=now - timedelta(days=30 - days_left),
            current_period_end=now + timedelta(days=days_left),
            **fields,
        )
        user.plan_tier = tier
        session.add(sub)
        session.add(user)
        session.commit()
        session.refresh(sub)
        return sub

    return _subscribe


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@example.com", role="admin")


@pytest.fixture(scope="function")
def requests_mocker(request):
    r"""requests-mock Mocker for HTTP stubbing.

    - If the autouse no_real_http mocker is active, reuse it to avoid nested mockers.
    - Otherwise, create a temporary one for this fixture's scope.
    """
    existing = getattr(request.node, "_requests_mocker", None)
    if existing is not None:
        yield existing
        return
    with requests_mock.Mocker() as m:
        yield m


@pytest.fixture(scope="function")
def celery_eager():
    """Put Celery into eager mode for the duration of the test.

    Example:
        def test_enqueue_runs_pipeline(celery_eager):
            from worker.tasks.carousels import generate_carousel
            result = generate_carousel.delay(str(carousel_id))
            assert result.get() == "COMPLETED"
    """
    app_mod = import_module("worker.tasks.app")
    celery_app = getattr(app_mod, "celery_app")
    prev_conf = dict(celery_app.conf)

    celery_app.conf.update(
        task_always_eager=True,
        task_eager_propagates=True,
        broker_url="memory://",
        result_backend="cache+memory://",
    )
    old_env: Optional[str] = os.environ.get("CELERY_EAGER")
    os.environ["CELERY_EAGER"] = "1"

    try:
        yield celery_app
    finally:
        if old_env is None:
            os.environ.pop("CELERY_EAGER", None)
        else:
            os.environ["CELERY_EAGER"] = old_env
        celery_app.conf.update(prev_conf)


# --- Network controls --------------------------------------------------------
LOCAL_PATTERNS = (
    re.compile(r"^http://(localhost|127\.0\.0\.1)"),
    re.compile(r"^https://(localhost|127\.0\.0\.1)"),
)


@pytest.fixture(autouse=True)
def no_real_http(request):
    r"""Block all real HTTP made through ``requests`` by default.

    - Allows only localhost/127.0.0.1 via passthrough registrations.
    - Use `allow_http` to open specific external hosts in a test.
    """
    with requests_mock.Mocker(real_http=False) as m:
        for pat in LOCAL_PATTERNS:
            m.register_uri(requests_mock.ANY, pat, real_http=True)
        setattr(request.node, "_requests_mocker", m)
        yield m


@pytest.fixture
def allow_http(request):
    r"""Helper to open specific external URLs by regex within a test.

    Example:
        def test_calls_openai(allow_http, requests_mocker):
            allow_http(r"^https://api\.openai\.com")
    """
    def _allow(*regexes: str):
        m = getattr(request.node, "_requests_mocker", None)
        if m is None:
            raise RuntimeError("no_real_http mocker is not active")
        compiled = [re.compile(r) for r in regexes]
        for pat in compiled:
            m.register_uri(requests_mock.ANY, pat, real_http=True)
        return compiled

    return _allow
