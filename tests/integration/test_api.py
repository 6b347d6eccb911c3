"""API integration tests (FastAPI TestClient over an in-memory store)"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from mailreview.api.app import create_app
from mailreview.cache.store import CacheStore
from mailreview.crypto.digest import is_digest
from mailreview.crypto.keys import ProfileKeyProvider
from mailreview.review import ReviewService
from mailreview.storage.settings_repository import SettingsRepository
from tests.conftest import INSTALLATION_ID, TEST_API_KEY, FakeGemini

MESSAGE = {
    "subject": "Lunch?",
    "to": ["alice@example.com", "bob@example.com"],
    "body": "Are we still on for Friday?",
    "session_id": "tab-7",
}


@pytest.fixture
def service(kv, clock, gemini):
    settings = SettingsRepository(kv, ProfileKeyProvider(kv, INSTALLATION_ID))
    return ReviewService(kv, settings, CacheStore(kv, clock=clock), gemini.client_factory)


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def configured(client):
    response = client.put("/api/settings", json={"api_key": TEST_API_KEY})
    assert response.status_code == 200
    return client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["ready"] is True


def test_uninitialized_service_is_503():
    client = TestClient(create_app())

    assert client.get("/health").json()["ready"] is False
    assert client.post("/api/review", json=MESSAGE).status_code == 503


def test_review_without_key_is_400(client, gemini):
    response = client.post("/api/review", json=MESSAGE)

    assert response.status_code == 400
    assert "API key" in response.json()["detail"]
    assert gemini.requests == []


def test_review_miss_then_hit(configured, gemini):
    first = configured.post("/api/review", json=MESSAGE)
    second = configured.post("/api/review", json=MESSAGE)

    assert first.status_code == second.status_code == 200
    assert first.json()["from_cache"] is False
    assert first.json()["content_changed"] is True
    assert second.json()["from_cache"] is True
    assert second.json()["content_changed"] is False
    assert second.json()["analysis"] == "Looks good to send."
    assert is_digest(first.json()["digest"])
    assert len(gemini.requests) == 1


def test_review_force_refresh(configured, gemini):
    configured.post("/api/review", json=MESSAGE)

    response = configured.post("/api/review", json={**MESSAGE, "force_refresh": True})

    assert response.json()["from_cache"] is False
    assert len(gemini.requests) == 2


def test_review_remote_failure_is_502(configured, gemini):
    gemini.status_code = 403

    response = configured.post("/api/review", json=MESSAGE)

    assert response.status_code == 502
    assert "403" in response.json()["detail"]
    assert TEST_API_KEY not in response.text


def test_previous_review(configured):
    assert configured.get("/api/review/previous/tab-7").status_code == 404

    reviewed = configured.post("/api/review", json=MESSAGE).json()
    response = configured.get("/api/review/previous/tab-7")

    assert response.status_code == 200
    assert response.json()["analysis"] == reviewed["analysis"]
    assert response.json()["digest"] == reviewed["digest"]


def test_cache_stats_and_purge(configured):
    configured.post("/api/review", json=MESSAGE)

    stats = configured.get("/api/cache/stats").json()
    assert stats["entries"] == 1
    assert stats["max_entries"] == 50

    assert configured.delete("/api/cache").json() == {"status": "cleared"}
    assert configured.get("/api/cache/stats").json()["entries"] == 0
    assert configured.get("/api/review/previous/tab-7").status_code == 404


def test_settings_view_masks_key(configured):
    response = configured.get("/api/settings")

    body = response.json()
    assert body["api_key_configured"] is True
    assert body["api_key_hint"] == "...mnop"
    assert TEST_API_KEY not in response.text


def test_settings_partial_update_keeps_key(configured):
    response = configured.put(
        "/api/settings",
        json={"cache_retention_days": 30, "prompt_templates": [{"name": "Tone", "text": "Be kind."}]},
    )

    body = response.json()
    assert body["api_key_configured"] is True
    assert body["cache_retention_days"] == 30
    assert body["prompt_templates"] == [{"name": "Tone", "text": "Be kind.", "enabled": True}]


def test_settings_out_of_range_retention_is_422(configured):
    response = configured.put("/api/settings", json={"cache_retention_days": 0})

    assert response.status_code == 422
    assert response.json()["invalid_fields"] == ["cache_retention_days"]


def test_clearing_api_key(configured):
    configured.put("/api/settings", json={"api_key": ""})

    assert configured.get("/api/settings").json()["api_key_configured"] is False


def test_connection_test_without_key(client, gemini):
    response = client.post("/api/settings/test-connection", json={})

    assert response.json() == {"ok": False, "message": "Enter an API key first"}
    assert gemini.requests == []


def test_connection_test_with_stored_key(configured, gemini):
    response = configured.post("/api/settings/test-connection", json={})

    assert response.json()["ok"] is True
    assert gemini.requests[0].headers["x-goog-api-key"] == TEST_API_KEY


def test_connection_test_failure_hides_key(client):
    failing = FakeGemini(status_code=401)
    client.app.state.review_service.client_factory = failing.client_factory

    response = client.post("/api/settings/test-connection", json={"api_key": TEST_API_KEY})

    assert response.json()["ok"] is False
    assert TEST_API_KEY not in response.text
