import json
from datetime import timedelta

import pytest
from sqlmodel import select

from audisell.core.clock import utcnow
from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.notification import Notification
from audisell.models.stripe_event import StripeEvent
from audisell.models.subscription import ManualSubscription
from audisell.models.trend_report import TrendReport
from audisell.models.usage import ApiName, ApiUsage, UsageLog
from audisell.services import trends
from audisell.services.ai_content.client_gemini import GenerationResult
from audisell.services.prompts import DEFAULT_PROMPTS, get_prompt


@pytest.fixture
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)


def test_admin_routes_reject_regular_users(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    for path in ("/api/admin/stats", "/api/admin/users", "/api/admin/settings", "/api/admin/prompts"):
        assert client.get(path, headers=headers).status_code == 403


def test_stats_overview(client, session, make_user, admin_headers, subscribe):
    user = make_user()
    subscribe(user, "creator")
    session.add(Carousel(user_id=user.id, status=CarouselStatus.COMPLETED))
    session.add(Carousel(user_id=user.id, status=CarouselStatus.FAILED))
    session.commit()

    body = client.get("/api/admin/stats", headers=admin_headers).json()
    assert body["total_users"] == 2
    assert body["total_carousels"] == 2
    assert body["pro_users"] == 1
    assert body["active_today"] == 2
    assert body["carousels_by_status"]["COMPLETED"] == 1
    assert body["carousels_by_status"]["QUEUED"] == 0


def test_metrics_are_zero_filled(client, admin_headers):
    body = client.get("/api/admin/metrics", headers=admin_headers).json()
    assert len(body["signups"]) == 30
    assert body["signups"][-1]["count"] == 1
    assert sum(day["count"] for day in body["carousels"]) == 0


def test_api_usage_costs(client, session, admin_headers):
    session.add(ApiUsage(action="transcribe", api_name=ApiName.whisper, audio_seconds=100))
    session.add(ApiUsage(action="generate_script", api_name=ApiName.gemini, tokens_input=1000, tokens_output=2000))
    session.commit()

    body = client.get("/api/admin/api-usage?period=week", headers=admin_headers).json()
    assert body["whisper"] == {"calls": 1, "seconds": 100, "cost_usd": 0.6}
    assert body["gemini"]["output_tokens"] == 2000
    assert body["total_cost_usd"] == pytest.approx(0.6009, abs=1e-4)

    assert client.get("/api/admin/api-usage?period=year", headers=admin_headers).status_code == 400


def test_revenue_counts_active_paid_subscriptions(client, make_user, admin_headers, subscribe):
    subscribe(make_user("a@example.com"), "creator", stripe_subscription_id="sub_a")
    subscribe(make_user("b@example.com"), "starter", stripe_subscription_id="sub_b", status="cancelled")

    body = client.get("/api/admin/revenue", headers=admin_headers).json()
    assert body["subscriptions"]["active"] == 1
    assert body["subscriptions"]["by_plan"] == {"creator": 1}
    assert client.get("/api/admin/revenue?period=1y", headers=admin_headers).status_code == 400


def test_list_users_with_search(client, session, make_user, admin_headers):
    ana = make_user("ana@example.com", full_name="Ana Lima")
    make_user("bruno@example.com")
    session.add(Carousel(user_id=ana.id))
    session.commit()

    page = client.get("/api/admin/users?search=LIMA", headers=admin_headers).json()
    assert page["total"] == 1
    assert page["items"][0]["email"] == "ana@example.com"
    assert page["items"][0]["carousel_count"] == 1

    everyone = client.get("/api/admin/users?per_page=2", headers=admin_headers).json()
    assert everyone["total"] == 3
    assert len(everyone["items"]) == 2


def test_update_user_role_and_plan(client, make_user, admin_headers):
    user = make_user()
    resp = client.patch(f"/api/admin/users/{user.id}", json={"role": "admin", "plan_tier": "Agency"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["role"] == "admin"
    assert resp.json()["plan_tier"] == "agency"

    bad = client.patch(f"/api/admin/users/{user.id}", json={"plan_tier": "platinum"}, headers=admin_headers)
    assert bad.status_code == 400


def test_only_superadmin_touches_superadmin(client, make_user, auth_headers, admin_headers):
    target = make_user("target@example.com")
    denied = client.patch(f"/api/admin/users/{target.id}", json={"role": "superadmin"}, headers=admin_headers)
    assert denied.status_code == 403

    boss = make_user("boss@example.com", role="superadmin")
    allowed = client.patch(f"/api/admin/users/{target.id}", json={"role": "superadmin"}, headers=auth_headers(boss))
    assert allowed.status_code == 200
    assert allowed.json()["role"] == "superadmin"


def test_admin_cannot_deactivate_self(client, admin_user, admin_headers):
    resp = client.patch(f"/api/admin/users/{admin_user.id}", json={"is_active": False}, headers=admin_headers)
    assert resp.status_code == 400


def test_manual_grant_replaces_previous_and_notifies(client, session, make_user, auth_headers, admin_headers):
    user = make_user("vip@example.com")
    first = client.post(
        "/api/admin/manual-subscriptions",
        json={"email": "vip@example.com", "plan_tier": "starter", "duration_days": 30},
        headers=admin_headers,
    )
    assert first.status_code == 201
    assert first.json()["expires_at"] is not None

    second = client.post(
        "/api/admin/manual-subscriptions",
        json={"user_id": str(user.id), "plan_tier": "agency", "custom_daily_limit": 40, "reason": "parceria"},
        headers=admin_headers,
    )
    assert second.status_code == 201

    active = client.get("/api/admin/manual-subscriptions?active_only=true", headers=admin_headers).json()
    assert [g["plan_tier"] for g in active] == ["agency"]

    state = client.get("/api/subscription", headers=auth_headers(user)).json()
    assert state["plan"] == "agency"
    assert state["daily_limit"] == 40

    session.expire_all()
    notes = session.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert len(notes) == 2

    revoked = client.delete(f"/api/admin/manual-subscriptions/{second.json()['id']}", headers=admin_headers)
    assert revoked.json()["is_active"] is False
    session.expire_all()
    assert session.exec(select(ManualSubscription).where(ManualSubscription.is_active == True)).all() == []  # noqa: E712


def test_manual_grant_validation(client, admin_headers):
    assert client.post(
        "/api/admin/manual-subscriptions", json={"email": "nobody@example.com", "plan_tier": "creator"}, headers=admin_headers
    ).status_code == 404
    assert client.post(
        "/api/admin/manual-subscriptions", json={"email": "nobody@example.com", "plan_tier": "free"}, headers=admin_headers
    ).status_code == 400


def test_settings_and_feature_flags_round_trip(client, admin_headers):
    current = client.get("/api/admin/settings", headers=admin_headers).json()
    assert current["maintenance_mode"] is False

    updated = client.put(
        "/api/admin/settings",
        json={**current, "signups_enabled": False, "maintenance_message": "Pausa"},
        headers=admin_headers,
    ).json()
    assert updated["signups_enabled"] is False
    assert client.get("/api/admin/settings", headers=admin_headers).json()["maintenance_message"] == "Pausa"

    flags = client.put("/api/admin/feature-flags", json={"trends_enabled": False}, headers=admin_headers).json()
    assert flags["trends_enabled"] is False
    assert flags["retention_offer_enabled"] is True
    assert client.get("/api/public/config").json()["feature_flags"]["trends_enabled"] is False

    # Earlier settings survive a partial update
    partial = client.put("/api/admin/settings", json={"maintenance_mode": True}, headers=admin_headers).json()
    assert partial["maintenance_mode"] is True
    assert partial["maintenance_message"] == "Pausa"
    assert client.put("/api/admin/settings", json={"max_audio_seconds": 1}, headers=admin_headers).status_code == 422
    assert client.put("/api/admin/feature-flags", json={"dark_mode": True}, headers=admin_headers).status_code == 422


def test_plan_configs_listing_and_update(client, session, admin_headers):
    listed = client.get("/api/admin/plans", headers=admin_headers).json()
    assert [p["tier"] for p in listed] == ["free", "starter", "creator", "agency"]
    assert not any(p["configured"] for p in listed)

    resp = client.put("/api/admin/plans/starter", json={"daily_limit": 3, "price_brl": 3990}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["daily_limit"] == 3
    assert resp.json()["name"] == "Starter"

    public = {p["tier"]: p for p in client.get("/api/plans").json()}
    assert public["starter"]["daily_limit"] == 3
    assert client.put("/api/admin/plans/gold", json={"daily_limit": 3}, headers=admin_headers).status_code == 404


def test_prompt_override_and_reset(client, session, admin_headers):
    listed = {p["key"]: p for p in client.get("/api/admin/prompts", headers=admin_headers).json()}
    assert set(listed) == set(DEFAULT_PROMPTS)
    assert listed["tone_emotional"]["is_custom"] is False
    assert listed["tone_emotional"]["category"] == "tone"

    resp = client.put("/api/admin/prompts/tone_emotional", json={"prompt": "Seja caloroso."}, headers=admin_headers)
    assert resp.status_code == 200
    assert get_prompt("tone_emotional", session) == "Seja caloroso."
    listed = {p["key"]: p for p in client.get("/api/admin/prompts", headers=admin_headers).json()}
    assert listed["tone_emotional"]["is_custom"] is True

    assert client.delete("/api/admin/prompts/tone_emotional", headers=admin_headers).json() == {"ok": True, "key": "tone_emotional"}
    assert get_prompt("tone_emotional", session) == DEFAULT_PROMPTS["tone_emotional"]
    assert client.put("/api/admin/prompts/unknown", json={"prompt": "x"}, headers=admin_headers).status_code == 404


def test_logs_endpoints(client, session, admin_headers, make_user):
    user = make_user()
    session.add(StripeEvent(event_id="evt_ok", event_type="invoice.paid", processed=True))
    session.add(StripeEvent(event_id="evt_bad", event_type="invoice.paid", error_message="boom"))
    session.add(UsageLog(user_id=user.id, action="CAROUSEL_CREATED"))
    session.add(UsageLog(action="CLEANUP_OLD_IMAGES"))
    session.commit()

    failed = client.get("/api/admin/stripe-events?failed_only=true", headers=admin_headers).json()
    assert [e["event_id"] for e in failed] == ["evt_bad"]
    mine = client.get(f"/api/admin/usage-logs?user_id={user.id}", headers=admin_headers).json()
    assert [log["action"] for log in mine] == ["CAROUSEL_CREATED"]


def test_cleanup_accepts_service_token(client, session, make_user, media_root):
    user = make_user()
    old = Carousel(
        user_id=user.id,
        status=CarouselStatus.COMPLETED,
        image_urls=["/media/x.svg"],
        created_at=utcnow() - timedelta(days=40),
    )
    session.add(old)
    session.commit()

    assert client.post("/api/admin/cleanup-images").status_code == 401
    assert client.post("/api/admin/cleanup-images", headers={"X-Service-Token": "wrong"}).status_code == 401

    resp = client.post("/api/admin/cleanup-images?retention_days=30", headers={"X-Service-Token": "service-token-for-tests"})
    assert resp.status_code == 200
    assert resp.json()["carousels_cleaned"] == 1


def _trend_carousels(session, make_user, n=3):
    user = make_user("creator@example.com")
    for i in range(n):
        session.add(Carousel(user_id=user.id, transcription=f"Hoje quero falar sobre finanças pessoais e investimentos, parte {i}."))
    session.commit()


def test_trend_analysis_builds_report_and_evolution(client, session, make_user, admin_headers, monkeypatch):
    _trend_carousels(session, make_user)
    answers = iter([
        {"topics": [{"name": "Finanças", "percentage": 40}], "summary": "primeira"},
        {"topics": [{"name": "Finanças", "percentage": 60}, {"name": "Saúde", "percentage": 10}], "summary": "segunda"},
    ])

    def _fake(prompt, **kwargs):
        assert "[1]" in prompt
        return GenerationResult(text=json.dumps(next(answers)), model="gemini-test", tokens_input=900, tokens_output=100)

    monkeypatch.setattr(trends.client_gemini, "generate_with_usage", _fake)

    first = client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers)
    assert first.status_code == 200
    assert first.json()["carousels_analyzed"] == 3
    assert first.json()["tokens_used"] == 1000

    second = client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers).json()
    assert [t["name"] for t in second["evolution"]["growing"]] == ["finanças"]
    assert [t["name"] for t in second["evolution"]["new"]] == ["saúde"]
    assert len(second["report"]["sample_transcriptions"]) == 3

    history = client.get("/api/admin/trends?period_days=7", headers=admin_headers).json()
    assert len(history) == 2
    assert session.exec(select(TrendReport)).all()


def test_trend_report_counts_only_analysed_transcriptions(client, session, make_user, admin_headers, monkeypatch):
    _trend_carousels(session, make_user)
    user = make_user("short@example.com")
    session.add(Carousel(user_id=user.id, transcription="Oi, tudo bem?"))
    session.add(Carousel(user_id=user.id, transcription="Teste curto."))
    session.commit()
    monkeypatch.setattr(
        trends.client_gemini,
        "generate_with_usage",
        lambda prompt, **kw: GenerationResult(text=json.dumps({"topics": []}), model="m"),
    )

    body = client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers).json()
    assert body["carousels_analyzed"] == 3


def test_trend_analysis_rejects_bad_period_and_thin_data(client, session, make_user, admin_headers):
    assert client.post("/api/admin/trends/analyze", json={"period_days": 14}, headers=admin_headers).status_code == 400
    assert client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers).status_code == 400


def test_trend_analysis_invalid_model_output(client, session, make_user, admin_headers, monkeypatch):
    _trend_carousels(session, make_user)
    monkeypatch.setattr(
        trends.client_gemini, "generate_with_usage", lambda prompt, **kw: GenerationResult(text="not json", model="m")
    )
    assert client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers).status_code == 502


def test_trend_analysis_respects_feature_flag(client, admin_headers):
    client.put("/api/admin/feature-flags", json={"trends_enabled": False}, headers=admin_headers)
    assert client.post("/api/admin/trends/analyze", json={"period_days": 7}, headers=admin_headers).status_code == 403
