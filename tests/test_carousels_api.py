import base64

from sqlmodel import select

from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.notification import Notification
from audisell.models.usage import DailyUsage, UsageAction, UsageLog
from audisell.services import pipeline

AUDIO = b"\x1aE\xdf\xa3fake-webm-bytes"


def _post_audio(client, headers, **fields):
    return client.post(
        "/api/carousels",
        files={"audio": ("recording.webm", AUDIO, "audio/webm")},
        data=fields,
        headers=headers,
    )


def test_create_carousel_runs_pipeline_to_completion(client, session, make_user, auth_headers, media_root):
    user = make_user()
    headers = auth_headers(user)

    resp = _post_audio(client, headers, creativeTone="emotional", textMode="creative")
    assert resp.status_code == 202
    created = resp.json()
    assert created["status"] == "QUEUED"
    assert created["tone"] == "emotional"
    assert created["has_watermark"] is True

    status = client.get(f"/api/carousels/{created['id']}/status", headers=headers)
    assert status.status_code == 200
    assert status.json()["status"] == "COMPLETED"
    assert status.json()["slide_count"] == 6

    full = client.get(f"/api/carousels/{created['id']}", headers=headers).json()
    assert full["transcription"]
    assert len(full["script"]["slides"]) == 6
    assert len(full["image_urls"]) == 6
    slide_dir = media_root / "carousel-images" / str(user.id) / created["id"]
    assert sorted(p.name for p in slide_dir.iterdir())[0] == "slide-1.svg"
    assert "DEMO" in (slide_dir / "slide-1.svg").read_text()

    usage = session.exec(select(DailyUsage).where(DailyUsage.user_id == user.id)).one()
    assert usage.carousels_created == 1
    notes = session.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert [n.type for n in notes] == ["carousel_ready"]
    created_logs = session.exec(select(UsageLog).where(UsageLog.action == UsageAction.CAROUSEL_CREATED.value)).all()
    assert len(created_logs) == 1


def test_create_carousel_from_base64_json(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    payload = {
        "audio": "data:audio/mp4;base64," + base64.b64encode(AUDIO).decode(),
        "mimeType": "audio/mp4",
        "slideCountMode": "manual",
        "slideCount": 4,
    }
    resp = client.post("/api/carousels", json=payload, headers=headers)
    assert resp.status_code == 202
    status = client.get(f"/api/carousels/{resp.json()['id']}/status", headers=headers).json()
    assert status["slide_count"] == 4


def test_free_plan_quota_is_enforced(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    assert _post_audio(client, headers).status_code == 202

    resp = _post_audio(client, headers)
    assert resp.status_code == 429
    error = resp.json()["error"]
    assert error["code"] == "quota_exceeded"
    assert error["details"] == {"plan": "free", "limit": 1, "used": 1, "period": "daily"}


def test_premium_template_requires_plan(client, make_user, auth_headers):
    resp = _post_audio(client, auth_headers(make_user()), template="gradient")
    assert resp.status_code == 403
    assert resp.json()["error"]["details"]["plan"] == "free"


def test_invalid_options_are_rejected(client, make_user, auth_headers):
    resp = _post_audio(client, auth_headers(make_user()), slideCount="40")
    assert resp.status_code == 422


def test_missing_audio_is_rejected(client, make_user, auth_headers):
    resp = client.post("/api/carousels", json={"mimeType": "audio/webm"}, headers=auth_headers(make_user()))
    assert resp.status_code == 400


def test_requires_authentication(client):
    assert client.post("/api/carousels", json={"audio": "AAAA"}).status_code == 401


def test_user_preferences_fill_missing_options(client, make_user, auth_headers):
    user = make_user(preferences={"tone": "provocative", "text_mode": "creative", "format": "STORY"})
    resp = _post_audio(client, auth_headers(user))
    body = resp.json()
    assert body["tone"] == "provocative"
    assert body["text_mode"] == "creative"
    assert body["format"] == "STORY"


def test_other_users_carousel_is_not_found(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    carousel_id = _post_audio(client, auth_headers(owner)).json()["id"]
    stranger = make_user("stranger@example.com")
    assert client.get(f"/api/carousels/{carousel_id}", headers=auth_headers(stranger)).status_code == 404
    assert client.delete(f"/api/carousels/{carousel_id}", headers=auth_headers(stranger)).status_code == 404


def test_free_history_shows_latest_only(client, session, make_user, auth_headers):
    user = make_user()
    for _ in range(3):
        session.add(Carousel(user_id=user.id, status=CarouselStatus.COMPLETED))
    session.commit()
    assert len(client.get("/api/carousels", headers=auth_headers(user)).json()) == 1


def test_paid_history_shows_everything(client, session, make_user, auth_headers, subscribe):
    user = make_user()
    subscribe(user, "starter")
    for _ in range(3):
        session.add(Carousel(user_id=user.id, status=CarouselStatus.COMPLETED))
    session.commit()
    assert len(client.get("/api/carousels", headers=auth_headers(user)).json()) == 3


def test_edit_script_and_rerender(client, make_user, auth_headers, subscribe, media_root):
    user = make_user()
    subscribe(user, "creator")
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]

    edited = client.patch(
        f"/api/carousels/{carousel_id}/script",
        json={"slides": [{"number": 2, "text": "Texto revisado à mão"}]},
        headers=headers,
    )
    assert edited.status_code == 200
    assert edited.json()["script"]["slides"][1]["text"] == "Texto revisado à mão"

    rendered = client.post(f"/api/carousels/{carousel_id}/images", json={"style": "WHITE_BLACK"}, headers=headers)
    assert rendered.status_code == 200
    assert rendered.json()["style"] == "WHITE_BLACK"
    assert rendered.json()["has_watermark"] is False
    svg = (media_root / "carousel-images" / str(user.id) / carousel_id / "slide-2.svg").read_text()
    assert "revisado" in svg


def test_edit_unknown_slide_number(client, make_user, auth_headers, subscribe):
    user = make_user()
    subscribe(user, "creator")
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]
    resp = client.patch(f"/api/carousels/{carousel_id}/script", json={"slides": [{"number": 40, "text": "x"}]}, headers=headers)
    assert resp.status_code == 400


def test_free_plan_cannot_edit(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]
    resp = client.patch(f"/api/carousels/{carousel_id}/script", json={"slides": [{"number": 1, "text": "x"}]}, headers=headers)
    assert resp.status_code == 403


def test_regenerate_without_watermark_after_upgrade(client, make_user, auth_headers, subscribe, media_root):
    user = make_user()
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]
    assert client.post(f"/api/carousels/{carousel_id}/regenerate-without-watermark", headers=headers).status_code == 403

    subscribe(user, "starter")
    resp = client.post(f"/api/carousels/{carousel_id}/regenerate-without-watermark", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["has_watermark"] is False
    svg = (media_root / "carousel-images" / str(user.id) / carousel_id / "slide-1.svg").read_text()
    assert "DEMO" not in svg


def test_rerender_requires_finished_carousel(client, session, make_user, auth_headers, subscribe):
    user = make_user()
    subscribe(user, "creator")
    carousel = Carousel(user_id=user.id, status=CarouselStatus.SCRIPTING)
    session.add(carousel)
    session.commit()
    resp = client.post(f"/api/carousels/{carousel.id}/images", headers=auth_headers(user))
    assert resp.status_code == 409


def test_delete_carousel_removes_files(client, session, make_user, auth_headers, media_root):
    user = make_user()
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]
    assert (media_root / "carousel-images" / str(user.id) / carousel_id).exists()

    assert client.delete(f"/api/carousels/{carousel_id}", headers=headers).status_code == 204
    assert not (media_root / "carousel-images" / str(user.id) / carousel_id).exists()
    assert not list((media_root / "audio" / str(user.id)).iterdir())
    assert client.get(f"/api/carousels/{carousel_id}", headers=headers).status_code == 404


def test_pipeline_failure_is_recorded(client, session, make_user, auth_headers, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("GEMINI_RATE_LIMIT_EXCEEDED")

    monkeypatch.setattr(pipeline, "generate_script", _boom)
    user = make_user()
    headers = auth_headers(user)
    carousel_id = _post_audio(client, headers).json()["id"]

    status = client.get(f"/api/carousels/{carousel_id}/status", headers=headers).json()
    assert status["status"] == "FAILED"
    assert status["error_message"] == "GEMINI_RATE_LIMIT_EXCEEDED"

    failed = session.exec(select(UsageLog).where(UsageLog.action == UsageAction.CAROUSEL_FAILED.value)).one()
    assert failed.details["stage"] == "script"
    notes = session.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert [n.type for n in notes] == ["carousel_failed"]
