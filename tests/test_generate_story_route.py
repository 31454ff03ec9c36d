import io
import sys
from pathlib import Path

import pytest
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api_handler import (
    INVALID_CREDENTIALS,
    QUOTA_EXCEEDED,
    TIMEOUT,
    TRANSIENT,
    GeneratedImage,
    ProviderError,
)
from story_studio import create_app
from story_studio.config import TestConfig
from story_studio.extensions import db
from story_studio.models import Story
from story_studio.services import illustration, story_text

STORY = (
    "Ana encontrou um mapa antigo no sótão da avó. Seguindo as pistas, atravessou o bosque, "
    "resolveu enigmas e descobriu que o tesouro era a amizade que fez pelo caminho."
)

ANA_PAYLOAD = {
    "mainCharacter": "Ana",
    "plot": "finds a lost map",
    "ending": "happy",
    "genre": "adventure",
    "literature": "story",
}


def _png_bytes(size=(1024, 1024)) -> bytes:
    image = Image.linear_gradient("L").resize(size).convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class DummyClient:
    def __init__(self, text=STORY, text_error=None, image_error=None, image=None):
        self.text = text
        self.text_error = text_error
        self.image_error = image_error
        self.image = image if image is not None else _png_bytes()
        self.text_calls = []
        self.image_calls = []

    def generate_text(self, **kwargs):
        self.text_calls.append(kwargs)
        if self.text_error is not None:
            raise self.text_error
        return self.text

    def generate_image(self, **kwargs):
        self.image_calls.append(kwargs)
        if self.image_error is not None:
            raise self.image_error
        return GeneratedImage(data=self.image)


def _build_app(config_class=TestConfig):
    app = create_app(config_class)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    return app, ctx


@pytest.fixture
def app_instance():
    app, ctx = _build_app()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def _use_client(monkeypatch, dummy):
    monkeypatch.setattr(story_text, "_get_story_client", lambda: dummy)
    monkeypatch.setattr(illustration, "_get_story_client", lambda: dummy)


def test_generate_story_returns_text_illustration_and_saved_record(monkeypatch, client):
    dummy = DummyClient()
    _use_client(monkeypatch, dummy)

    response = client.post("/api/generate-story", json=ANA_PAYLOAD)

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["story"] == STORY
    assert payload["illustration"].startswith("data:image/jpeg;base64,")
    assert len(payload["illustration"]) <= 80 * 1024
    assert payload["illustrationType"] == "inline"
    assert payload["illustrationPrompt"].startswith("Simple illustration for:")
    assert payload["metadata"]["hasImage"] is True
    assert payload["metadata"]["image"]["revisedPrompt"] is None
    assert payload["metadata"]["wordCount"] > 20
    assert payload["database"]["saved"] is True
    assert payload["database"]["warning"] is None
    assert payload["userInput"]["mainCharacter"] == "Ana"

    story = db.session.get(Story, payload["database"]["storyId"])
    assert story is not None
    assert story.text == STORY
    assert story.main_character == "Ana"
    assert story.genre == "adventure"
    assert story.illustration == payload["illustration"]

    assert len(dummy.text_calls) == 1
    assert "Ana" in dummy.text_calls[0]["user_prompt"]
    assert "Brazilian Portuguese" in dummy.text_calls[0]["system_prompt"]
    assert len(dummy.image_calls) == 1


def test_generate_story_accepts_form_encoded_body(monkeypatch, client):
    _use_client(monkeypatch, DummyClient())

    response = client.post("/api/generate-story", data={"mainCharacter": "Ana", "plot": "map", "ending": "happy"})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["userInput"]["genre"] == "Not provided"
    assert payload["database"]["saved"] is True


def test_missing_fields_are_rejected_before_any_provider_call(monkeypatch, client):
    dummy = DummyClient()
    _use_client(monkeypatch, dummy)

    response = client.post("/api/generate-story", json={"mainCharacter": "Ana", "plot": "   "})

    assert response.status_code == 400
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["code"] == "MISSING_FIELDS"
    assert set(payload["missing"]) == {"plot", "ending"}
    assert dummy.text_calls == []
    assert Story.query.count() == 0


def test_get_is_not_allowed(client):
    response = client.get("/api/generate-story")

    assert response.status_code == 405
    assert response.get_json()["code"] == "METHOD_NOT_ALLOWED"


def test_quota_exhaustion_maps_to_429_without_saving(monkeypatch, client):
    dummy = DummyClient(text_error=ProviderError(QUOTA_EXCEEDED, "Provider quota exceeded."))
    _use_client(monkeypatch, dummy)

    response = client.post("/api/generate-story", json=ANA_PAYLOAD)

    assert response.status_code == 429
    assert response.get_json()["code"] == "QUOTA_EXCEEDED"
    assert len(dummy.text_calls) == 1
    assert dummy.image_calls == []
    assert Story.query.count() == 0


def test_invalid_credentials_map_to_401(monkeypatch, client):
    _use_client(monkeypatch, DummyClient(text_error=ProviderError(INVALID_CREDENTIALS, "bad key")))

    response = client.post("/api/generate-story", json=ANA_PAYLOAD)

    assert response.status_code == 401
    assert response.get_json()["code"] == "INVALID_CREDENTIALS"


def test_timeouts_are_retried_then_map_to_504(monkeypatch, client):
    dummy = DummyClient(text_error=ProviderError(TIMEOUT, "too slow"))
    _use_client(monkeypatch, dummy)

    response = client.post("/api/generate-story", json=ANA_PAYLOAD)

    assert response.status_code == 504
    assert response.get_json()["code"] == "TIMEOUT"
    assert len(dummy.text_calls) == TestConfig.PROVIDER_RETRY_ATTEMPTS + 1


def test_failed_illustration_still_returns_and_saves_story(monkeypatch, client):
    dummy = DummyClient(image_error=ProviderError(TRANSIENT, "image service down"))
    _use_client(monkeypatch, dummy)

    response = client.post("/api/generate-story", json=ANA_PAYLOAD)

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["story"] == STORY
    assert payload["illustration"] == ""
    assert payload["illustrationType"] == "none"
    assert payload["metadata"]["hasImage"] is False
    assert payload["metadata"]["image"]["errorCode"] == TRANSIENT
    assert payload["database"]["saved"] is True
    assert len(dummy.image_calls) == TestConfig.PROVIDER_RETRY_ATTEMPTS + 1

    story = db.session.get(Story, payload["database"]["storyId"])
    assert story.illustration == ""


class NoDatabaseConfig(TestConfig):
    DATABASE_URL = None


class NoKeyConfig(TestConfig):
    OPENAI_API_KEY = None


def test_story_is_returned_unsaved_without_database_url(monkeypatch):
    app, ctx = _build_app(NoDatabaseConfig)
    try:
        _use_client(monkeypatch, DummyClient())
        response = app.test_client().post("/api/generate-story", json=ANA_PAYLOAD)

        assert response.status_code == 200
        payload = response.get_json()
        assert payload["story"] == STORY
        assert payload["database"]["saved"] is False
        assert payload["database"]["errorCode"] == "NO_DATABASE_URL"
        assert Story.query.count() == 0
    finally:
        db.session.remove()
        ctx.pop()


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    app, ctx = _build_app(NoKeyConfig)
    try:
        dummy = DummyClient()
        _use_client(monkeypatch, dummy)
        response = app.test_client().post("/api/generate-story", json=ANA_PAYLOAD)

        assert response.status_code == 500
        assert response.get_json()["code"] == "MISSING_API_KEY"
        assert dummy.text_calls == []
    finally:
        db.session.remove()
        ctx.pop()
