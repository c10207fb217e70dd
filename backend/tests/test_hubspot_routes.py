import hashlib
import json
import logging
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routes import hubspot as hubspot_routes
from services.errors import HubSpotAPIError, TransientStoreError
from services.hubspot_webhooks import BatchResult, EventResult, EventStatus
from services.webhook_signatures import HubSpotSignatureVerifier, get_signature_verifier


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BODY = json.dumps([
    {"eventId": 1, "portalId": 1, "subscriptionType": "contact.creation", "objectId": 101},
    {"eventId": 2, "portalId": 1, "subscriptionType": "company.creation", "objectId": 7},
    {"eventId": 3, "portalId": 1, "subscriptionType": "contact.deletion", "objectId": 102},
]).encode()


class _StaticVerifier:
    def __init__(self, valid: bool) -> None:
        self.valid = valid

    def verify(self, method, url, body, headers) -> bool:
        return self.valid


class _RecordingDispatcher:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.batches: list[list] = []

    async def process_batch(self, events):
        self.batches.append(events)
        if self.error is not None:
            raise self.error
        statuses = [EventStatus.IGNORED if event.kind == "unknown" else EventStatus.APPLIED for event in events]
        return BatchResult([EventResult(event, status) for event, status in zip(events, statuses)])


@pytest.fixture
def dispatcher():
    recording = _RecordingDispatcher()
    app.dependency_overrides[get_signature_verifier] = lambda: _StaticVerifier(True)
    app.dependency_overrides[hubspot_routes.get_webhook_dispatcher] = lambda: recording
    yield recording
    app.dependency_overrides.clear()


client = TestClient(app)


def test_webhook_applies_batch(dispatcher) -> None:
    response = client.post("/hubspot/webhook", content=BODY, headers={"Content-Type": "application/json"})
    logger.info("Webhook response", extra={"status_code": response.status_code, "body": response.json()})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["applied"] == 2
    assert payload["ignored"] == 1
    assert [event.kind for event in dispatcher.batches[0]] == ["upserted", "unknown", "deleted"]


def test_webhook_rejects_invalid_signature(dispatcher) -> None:
    app.dependency_overrides[get_signature_verifier] = lambda: _StaticVerifier(False)

    response = client.post("/hubspot/webhook", content=BODY)

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid Signature"}
    assert dispatcher.batches == []


def test_webhook_rejects_invalid_json(dispatcher) -> None:
    response = client.post("/hubspot/webhook", content=b"{nope")

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid JSON"}
    assert dispatcher.batches == []


def test_webhook_rejects_non_array(dispatcher) -> None:
    response = client.post("/hubspot/webhook", content=b'{"eventId": 1}')

    assert response.status_code == 400
    assert response.json() == {"detail": "Expected JSON array"}


def test_webhook_returns_500_when_store_unavailable(dispatcher) -> None:
    dispatcher.error = TransientStoreError("database down")

    response = client.post("/hubspot/webhook", content=BODY)

    assert response.status_code == 500
    assert "database" not in response.text


def test_webhook_verifies_real_hubspot_signature(dispatcher) -> None:
    app.dependency_overrides[get_signature_verifier] = lambda: HubSpotSignatureVerifier("shhh")
    signature = hashlib.sha256(b"shhh" + BODY).hexdigest()

    accepted = client.post("/hubspot/webhook", content=BODY, headers={"X-HubSpot-Signature": signature})
    rejected = client.post("/hubspot/webhook", content=BODY, headers={"X-HubSpot-Signature": "0" * 64})

    assert accepted.status_code == 200
    assert rejected.status_code == 400


def test_install_redirects_to_hubspot(monkeypatch) -> None:
    monkeypatch.setattr(hubspot_routes.settings, "HUBSPOT_CLIENT_ID", "client-123")
    monkeypatch.setattr(hubspot_routes.settings, "HUBSPOT_REDIRECT_URI", "https://sync.example.com/hubspot/oauth-callback")

    response = client.get("/hubspot/install", follow_redirects=False)

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://app.hubspot.com/oauth/authorize?")
    assert "client_id=client-123" in location
    assert "scope=crm.objects.contacts.read" in location


def test_install_without_configuration_fails(monkeypatch) -> None:
    monkeypatch.setattr(hubspot_routes.settings, "HUBSPOT_CLIENT_ID", None)

    response = client.get("/hubspot/install", follow_redirects=False)

    assert response.status_code == 500


def test_oauth_callback_requires_code() -> None:
    app.dependency_overrides[hubspot_routes.get_session_factory] = lambda: None
    try:
        response = client.get("/hubspot/oauth-callback")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert response.json() == {"detail": "Missing code parameter."}


def test_oauth_callback_stores_tokens_and_redirects(monkeypatch) -> None:
    received: list[str] = []

    async def _fake_complete_oauth(_session_factory, _hubspot, code: str):
        received.append(code)

    monkeypatch.setattr(hubspot_routes, "complete_oauth", _fake_complete_oauth)
    app.dependency_overrides[hubspot_routes.get_session_factory] = lambda: None
    try:
        response = client.get("/hubspot/oauth-callback?code=abc", follow_redirects=False)
    finally:
        app.dependency_overrides.clear()

    assert received == ["abc"]
    assert response.status_code == 302
    assert response.headers["location"] == hubspot_routes.settings.HUBSPOT_POST_INSTALL_URL


def test_oauth_callback_reports_exchange_failure(monkeypatch) -> None:
    async def _failing_complete_oauth(*_args):
        raise HubSpotAPIError("HubSpot API error (400): bad code", status_code=400)

    monkeypatch.setattr(hubspot_routes, "complete_oauth", _failing_complete_oauth)
    app.dependency_overrides[hubspot_routes.get_session_factory] = lambda: None
    try:
        response = client.get("/hubspot/oauth-callback?code=bad", follow_redirects=False)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "bad code" not in response.text
