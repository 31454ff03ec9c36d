import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_studio import create_app
from story_studio.config import TestConfig
from story_studio.extensions import db
from story_studio.models import Story
from story_studio.services import persistence


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture
def stories(app_instance):
    base = datetime(2024, 5, 1, 9, 30, 0)
    records = [
        Story(
            text="The fox learned to share.",
            illustration="data:image/jpeg;base64,AAAA",
            main_character="Fox",
            plot="hoards berries",
            ending="shares",
            genre="fable",
            literature="fable",
            created_at=base,
        ),
        Story(
            text="Ana found the map.",
            illustration="https://cdn.example.com/stories/2.png",
            main_character="Ana",
            plot="finds a lost map",
            ending="happy",
            genre="adventure",
            literature="story",
            created_at=base + timedelta(hours=1),
        ),
    ]
    db.session.add_all(records)
    db.session.commit()
    return records


def test_library_lists_newest_story_first(client, stories):
    response = client.get("/api/stories")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["total"] == 2
    assert payload["page"] == 1
    assert payload["perPage"] == 50
    first, second = payload["stories"]
    assert first["mainCharacter"] == "Ana"
    assert first["illustrationType"] == "url"
    assert first["createdAt"].startswith("2024-05-01T10:30")
    assert second["mainCharacter"] == "Fox"
    assert second["illustrationType"] == "inline"


def test_library_page_size_is_capped(client, stories):
    payload = client.get("/api/stories?per_page=1000").get_json()

    assert payload["perPage"] == 100


def test_library_paginates(client, stories):
    payload = client.get("/api/stories?page=2&per_page=1").get_json()

    assert payload["pages"] == 2
    assert [story["mainCharacter"] for story in payload["stories"]] == ["Fox"]


def test_story_detail_returns_single_record(client, stories):
    story_id = stories[0].id

    response = client.get(f"/api/stories/{story_id}")

    assert response.status_code == 200
    assert response.get_json()["story"]["text"] == "The fox learned to share."


def test_story_detail_unknown_id_is_404(client, stories):
    response = client.get("/api/stories/9999")

    assert response.status_code == 404
    assert response.get_json()["code"] == "STORY_NOT_FOUND"


def test_library_reports_unreachable_store_as_503(monkeypatch, client):
    def _down():
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(persistence, "story_columns", _down)

    response = client.get("/api/stories")

    assert response.status_code == 503
    assert response.get_json()["code"] == "CONNECTION_FAILED"


class NoDatabaseConfig(TestConfig):
    DATABASE_URL = None


def test_library_without_database_url_is_a_configuration_error():
    app = create_app(NoDatabaseConfig)

    response = app.test_client().get("/api/stories")

    assert response.status_code == 500
    assert response.get_json()["code"] == "NO_DATABASE_URL"


def test_health_reports_configuration(client):
    payload = client.get("/api/health").get_json()

    assert payload["status"] == "ok"
    assert payload["providerConfigured"] is True
    assert payload["databaseConfigured"] is True
    assert payload["blobStorageConfigured"] is False
    assert payload["illustrationStorage"] == "inline"


def test_unknown_route_returns_json_404(client):
    response = client.get("/api/nowhere")

    assert response.status_code == 404
    assert response.get_json()["code"] == "NOT_FOUND"
