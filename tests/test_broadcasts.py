from datetime import timedelta

import pytest
from sqlmodel import select

from audisell.core.clock import utcnow
from audisell.models.broadcast import BroadcastJob, BroadcastKind, BroadcastRecipient
from audisell.models.notification import Notification
from audisell.models.subscription import ManualSubscription
from audisell.services import broadcasts
from audisell.services.mailer import mailer


@pytest.fixture
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)


@pytest.fixture(autouse=True)
def in_process_dispatch(monkeypatch):
    monkeypatch.delenv("RABBITMQ_URL", raising=False)
    monkeypatch.delenv("CELERY_EAGER", raising=False)


class _FlakyMailer:
    def __init__(self, reject):
        self.reject = set(reject)
        self.sent = []

    def send(self, to, subject, text, html=None):
        if to in self.reject:
            return False
        self.sent.append((to, subject))
        return True


def test_notification_broadcast_reaches_only_targeted_plan(client, session, make_user, admin_headers, subscribe):
    creator = make_user("creator@example.com")
    subscribe(creator, tier="creator")
    starter = make_user("starter@example.com")
    subscribe(starter, tier="starter", stripe_customer_id="cus_2", stripe_subscription_id="sub_2")
    make_user("free@example.com")

    resp = client.post(
        "/api/admin/broadcasts",
        json={"title": "Novidade", "body": "Novos templates / New templates", "target_plans": ["creator"]},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    job_id = resp.json()["id"]
    assert resp.json()["total_recipients"] == 1

    detail = client.get(f"/api/admin/broadcasts/{job_id}", headers=admin_headers).json()
    assert detail["job"]["status"] == "completed"
    assert detail["recipients"] == {"sent": 1}

    notes = session.exec(select(Notification)).all()
    assert [(n.user_id, n.type) for n in notes] == [(creator.id, "announcement")]


def test_email_broadcast_to_all_active_users(client, session, make_user, admin_headers):
    make_user("ana@example.com")
    make_user("bia@example.com")
    make_user("gone@example.com", is_active=False)

    resp = client.post(
        "/api/admin/broadcasts",
        json={
            "kind": "email",
            "title": "Manutenção",
            "body": "Sábado às 2h / Saturday at 2am",
            "email_subject": "Aviso de manutenção",
            "target_all_users": True,
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201
    assert sorted(m["to"] for m in mailer.outbox) == ["admin@example.com", "ana@example.com", "bia@example.com"]
    assert {m["subject"] for m in mailer.outbox} == {"Aviso de manutenção"}
    assert session.exec(select(Notification)).all() == []

    listed = client.get("/api/admin/broadcasts", headers=admin_headers).json()
    assert [(j["kind"], j["success_count"]) for j in listed] == [("email", 3)]


def test_broadcast_needs_a_known_target(client, admin_headers):
    body = {"title": "x", "body": "y"}
    assert client.post("/api/admin/broadcasts", json=body, headers=admin_headers).status_code == 400
    resp = client.post("/api/admin/broadcasts", json={**body, "target_plans": ["gold"]}, headers=admin_headers)
    assert resp.status_code == 400
    assert "gold" in resp.json()["detail"]


def test_broadcasts_are_admin_only(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    assert client.get("/api/admin/broadcasts", headers=headers).status_code == 403


def test_batches_resume_and_record_failures(session, make_user):
    for name in ("a", "b", "c"):
        make_user(f"{name}@example.com")
    job = broadcasts.create_broadcast(
        session, title="Oi", body="Olá", kind=BroadcastKind.email, target_plans=["free"],
    )
    assert job.total_recipients == 3
    flaky = _FlakyMailer(reject={"b@example.com"})

    job = broadcasts.process_batch(session, job.id, batch_size=2, mail=flaky)
    assert job.status == "processing"
    assert job.processed_count == 2

    job = broadcasts.process_batch(session, job.id, batch_size=2, mail=flaky)
    assert job.status == "completed"
    assert (job.success_count, job.failed_count) == (2, 1)
    failed = session.exec(select(BroadcastRecipient).where(BroadcastRecipient.status == "failed")).one()
    assert failed.email == "b@example.com"
    assert failed.error_message


def test_manual_grant_and_lapsed_subscription_targeting(session, make_user, subscribe):
    partner = make_user("partner@example.com")
    session.add(ManualSubscription(user_id=partner.id, plan_tier="agency"))
    lapsed = make_user("lapsed@example.com")
    sub = subscribe(lapsed, tier="creator")
    sub.current_period_end = utcnow() - timedelta(days=1)
    session.add(sub)
    session.commit()

    tiers = broadcasts.current_tiers(session)
    assert tiers[partner.id] == "agency"
    assert lapsed.id not in tiers
    free = broadcasts.resolve_recipients(session, ["free"])
    assert [u.email for u in free] == ["lapsed@example.com"]


def test_broadcast_without_recipients_completes_immediately(session):
    job = broadcasts.create_broadcast(session, title="t", body="b", target_plans=["agency"])
    assert job.status == "completed"
    assert job.total_recipients == 0
    assert session.exec(select(BroadcastJob)).one().completed_at is not None


def test_worker_task_delivers_broadcast(session, make_user, celery_eager):
    from worker.tasks.notifications import process_broadcast

    make_user()
    job = broadcasts.create_broadcast(session, title="t", body="b", target_all_users=True)
    assert process_broadcast.delay(str(job.id)).get() == "completed"
    assert len(session.exec(select(Notification)).all()) == 1
