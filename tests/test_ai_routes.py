import base64

from sqlmodel import select

from audisell.models.usage import ApiName, ApiUsage
from audisell.services import translation
from audisell.services.transcription import STUB_TRANSCRIPTION, TranscriptionError


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def test_transcribe_returns_text_and_records_usage(client, session, make_user, auth_headers):
    user = make_user()
    resp = client.post(
        "/api/transcribe",
        json={"audio": _b64(b"fake-audio"), "mimeType": "audio/webm", "audioSeconds": 30},
        headers=auth_headers(user),
    )
    assert resp.status_code == 200
    assert resp.json() == {"transcription": STUB_TRANSCRIPTION}

    row = session.exec(select(ApiUsage)).one()
    assert row.api_name == ApiName.whisper
    assert row.user_id == user.id
    assert row.audio_seconds == 30


def test_transcribe_rejects_oversized_audio(client, make_user, auth_headers, monkeypatch):
    from audisell.core.config import settings

    monkeypatch.setattr(settings, "MAX_AUDIO_BYTES", 4)
    resp = client.post("/api/transcribe", json={"audio": _b64(b"too-long")}, headers=auth_headers(make_user()))
    assert resp.status_code == 413


def test_transcribe_maps_provider_errors(client, make_user, auth_headers, monkeypatch):
    def _fail(*args, **kwargs):
        raise TranscriptionError("Whisper rate limit", status_code=429)

    monkeypatch.setattr("audisell.routers.transcribe.transcribe_and_record", _fail)
    resp = client.post("/api/transcribe", json={"audio": _b64(b"x")}, headers=auth_headers(make_user()))
    assert resp.status_code == 429


def test_transcribe_requires_login(client):
    assert client.post("/api/transcribe", json={"audio": _b64(b"x")}).status_code == 401


def test_generate_script_endpoint(client, make_user, auth_headers):
    resp = client.post(
        "/api/scripts/generate",
        json={"transcription": "Vamos falar de produtividade.", "slideCountMode": "manual", "slideCount": 5},
        headers=auth_headers(make_user()),
    )
    assert resp.status_code == 200
    slides = resp.json()["script"]["slides"]
    assert len(slides) == 5
    assert slides[0]["type"] == "HOOK"


def test_generate_script_template_gate(client, make_user, auth_headers, subscribe):
    user = make_user()
    payload = {"transcription": "texto", "template": "gradient"}
    assert client.post("/api/scripts/generate", json=payload, headers=auth_headers(user)).status_code == 403

    subscribe(user, "creator")
    assert client.post("/api/scripts/generate", json=payload, headers=auth_headers(user)).status_code == 200


def test_generate_script_rate_limited_by_model(client, make_user, auth_headers, monkeypatch):
    def _limited(*args, **kwargs):
        raise RuntimeError("GEMINI_RATE_LIMIT_EXCEEDED")

    monkeypatch.setattr("audisell.routers.scripts.generate_script", _limited)
    resp = client.post("/api/scripts/generate", json={"transcription": "oi"}, headers=auth_headers(make_user()))
    assert resp.status_code == 429


def test_translate_is_admin_only(client, make_user, auth_headers):
    payload = {"text": "Olá mundo", "target_language": "en"}
    assert client.post("/api/translate", json=payload, headers=auth_headers(make_user())).status_code == 403


def test_translate_uses_model(client, admin_user, auth_headers, monkeypatch):
    seen = {}

    def _fake(prompt, **kwargs):
        seen["prompt"] = prompt
        seen["system"] = kwargs["system_instruction"]
        return "  Hello world  "

    monkeypatch.setattr(translation.client_gemini, "generate", _fake)
    resp = client.post(
        "/api/translate",
        json={"text": "Olá mundo", "target_language": "en", "context": "faq"},
        headers=auth_headers(admin_user),
    )
    assert resp.json() == {"translated_text": "Hello world"}
    assert seen["prompt"].startswith("Translate the following text to English")
    assert "FAQ content" in seen["system"]


def test_translate_validation_and_failure(client, admin_user, auth_headers, monkeypatch):
    headers = auth_headers(admin_user)
    assert client.post("/api/translate", json={"text": " ", "target_language": "es"}, headers=headers).status_code == 400
    assert client.post("/api/translate", json={"text": "Oi", "target_language": "fr"}, headers=headers).status_code == 422

    def _down(prompt, **kwargs):
        raise RuntimeError("Gemini unavailable")

    monkeypatch.setattr(translation.client_gemini, "generate", _down)
    assert client.post("/api/translate", json={"text": "Oi", "target_language": "es"}, headers=headers).status_code == 502
