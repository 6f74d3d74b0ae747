"""
Connect listener tests (FastAPI TestClient).

The app's processor is replaced with one over InMemoryRecordStore, so no
Supabase settings are needed and every run can be inspected.

Coverage:
  - GET /healthz
  - Basic auth, including DOMAIN\\user normalization
  - X-DocuSign-Signature-1 HMAC verification
  - Body size limit, JSON and payload errors
  - In-process and ack-fast processing
"""

import base64
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from envelope_sync.config import PipelineConfig, StateStatus
from envelope_sync.routers.webhook import is_basic_auth_valid, verify_connect_hmac
from envelope_sync.services.memory_store import InMemoryRecordStore
from envelope_sync.services.webhook_processor import WebhookProcessor

HMAC_SECRET = base64.b64encode(b"connect-hmac-key").decode()

_LISTENER_VARS = (
    "LISTENER_BASIC_USER",
    "LISTENER_BASIC_PASS",
    "LISTENER_REQUIRE_HMAC",
    "DOCUSIGN_HMAC_SECRET",
    "LISTENER_ACK_FAST",
    "LISTENER_MAX_BODY_BYTES",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_connect_payload(event: str = "envelope-completed", envelope_id: str = "E1") -> dict:
    return {
        "event": event,
        "data": {
            "envelopeId": envelope_id,
            "envelopeSummary": {
                "status": "completed",
                "emailSubject": "Please sign",
                "envelopeDocuments": [
                    {"name": "contract.pdf", "PDFBytes": base64.b64encode(b"%PDF-1.7").decode()}
                ],
            },
        },
    }


def _basic(user: str, password: str) -> dict:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _sign(body: bytes, secret: str = HMAC_SECRET) -> str:
    digest = hmac.new(base64.b64decode(secret), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


@pytest.fixture()
def store():
    store = InMemoryRecordStore()
    store.seed("signature_requests", {"envelope_id": "E1", "state_code": 0, "status_code": 1})
    return store


@pytest.fixture()
def client(store, monkeypatch):
    """TestClient with listener settings cleared and an in-memory processor."""
    for name in _LISTENER_VARS:
        monkeypatch.delenv(name, raising=False)

    from envelope_sync.main import app

    app.state.processor = WebhookProcessor(
        store, PipelineConfig(completed=StateStatus(state=1, status=100))
    )
    yield TestClient(app)
    app.state.processor = None


# ===========================================================================
# Unit: auth helpers
# ===========================================================================

class TestBasicAuthHelper:

    def test_disabled_when_nothing_configured(self):
        assert is_basic_auth_valid(None, "", "") is True

    def test_exact_match(self):
        header = _basic("docusign", "s3cret")["Authorization"]
        assert is_basic_auth_valid(header, "docusign", "s3cret") is True

    def test_user_is_case_insensitive_password_is_not(self):
        header = _basic("DocuSign", "s3cret")["Authorization"]
        assert is_basic_auth_valid(header, "docusign", "s3cret") is True
        header = _basic("docusign", "S3CRET")["Authorization"]
        assert is_basic_auth_valid(header, "docusign", "s3cret") is False

    def test_domain_style_user_matches_upn(self):
        header = _basic("CORP\\alice", "pw")["Authorization"]
        assert is_basic_auth_valid(header, "alice@corp.local", "pw") is True

    @pytest.mark.parametrize("header", [None, "Bearer x", "Basic !!!", "Basic " + base64.b64encode(b"nocolon").decode()])
    def test_malformed_headers_are_rejected(self, header):
        assert is_basic_auth_valid(header, "docusign", "s3cret") is False


class TestHmacHelper:

    def test_valid_signature(self):
        body = b'{"event": "envelope-completed"}'
        assert verify_connect_hmac(HMAC_SECRET, body, _sign(body)) is True

    def test_tampered_body_fails(self):
        body = b'{"event": "envelope-completed"}'
        assert verify_connect_hmac(HMAC_SECRET, body + b" ", _sign(body)) is False

    def test_missing_signature_or_secret_fails(self):
        assert verify_connect_hmac(HMAC_SECRET, b"{}", None) is False
        assert verify_connect_hmac("", b"{}", _sign(b"{}")) is False


# ===========================================================================
# Endpoints
# ===========================================================================

class TestHealthz:

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == "ok"


class TestWebhookAuthentication:

    def test_rejects_missing_credentials(self, client, monkeypatch, store):
        monkeypatch.setenv("LISTENER_BASIC_USER", "docusign")
        monkeypatch.setenv("LISTENER_BASIC_PASS", "s3cret")

        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 401
        body = response.json()
        assert body["ok"] is False
        assert body["source"] == "listener"
        assert body["where"] == "auth"
        assert store.records("webhook_logs") == []

    def test_accepts_valid_credentials(self, client, monkeypatch):
        monkeypatch.setenv("LISTENER_BASIC_USER", "docusign")
        monkeypatch.setenv("LISTENER_BASIC_PASS", "s3cret")

        response = client.post(
            "/docusign/webhook",
            json=_make_connect_payload(),
            headers=_basic("docusign", "s3cret"),
        )

        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_rejects_missing_hmac_when_required(self, client, monkeypatch):
        monkeypatch.setenv("LISTENER_REQUIRE_HMAC", "true")
        monkeypatch.setenv("DOCUSIGN_HMAC_SECRET", HMAC_SECRET)

        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 401
        assert response.json()["where"] == "hmac"

    def test_accepts_valid_hmac(self, client, monkeypatch):
        monkeypatch.setenv("LISTENER_REQUIRE_HMAC", "true")
        monkeypatch.setenv("DOCUSIGN_HMAC_SECRET", HMAC_SECRET)
        body = json.dumps(_make_connect_payload()).encode()

        response = client.post(
            "/docusign/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-DocuSign-Signature-1": _sign(body)},
        )

        assert response.status_code == 200


class TestWebhookPayloadErrors:

    def test_oversized_body_is_rejected(self, client, monkeypatch, store):
        monkeypatch.setenv("LISTENER_MAX_BODY_BYTES", "16")

        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 413
        assert response.json()["where"] == "size"
        assert store.operations == []

    def test_invalid_json_is_400(self, client):
        response = client.post(
            "/docusign/webhook",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["where"] == "json"

    def test_missing_envelope_id_is_400(self, client, store):
        response = client.post("/docusign/webhook", json={"event": "envelope-completed", "data": {}})

        assert response.status_code == 400
        assert response.json()["where"] == "input"
        assert store.operations == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"event": "envelope-completed", "data": "oops"},
            {"event": "envelope-completed", "data": [1]},
            {"body": json.dumps([1])},
        ],
    )
    def test_wrong_typed_nesting_is_400(self, client, store, payload):
        response = client.post("/docusign/webhook", json=payload)

        assert response.status_code == 400
        assert response.json()["where"] == "input"
        assert store.operations == []

    def test_invalid_utf8_is_400(self, client, store):
        response = client.post(
            "/docusign/webhook",
            content=b"\xff\xfe{}",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["where"] == "json"
        assert store.operations == []


class TestWebhookProcessing:

    @pytest.mark.parametrize(
        "summary_overrides",
        [
            {"customFields": []},
            {"sender": "alice@example.com"},
            {"envelopeDocuments": "none"},
        ],
    )
    def test_wrong_typed_summary_fields_are_ignored(self, client, store, summary_overrides):
        payload = _make_connect_payload(event="envelope-sent")
        payload["data"]["envelopeSummary"].update(summary_overrides)

        response = client.post("/docusign/webhook", json=payload)

        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_completed_event_is_processed_in_process(self, client, store):
        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["source"] == "listener"
        assert body["queued"] is False
        assert body["id"]
        assert body["result"]["handled"] == "completed"
        assert store.records("webhook_logs")[0]["log_state"] == "processed"
        assert store.records("signature_requests")[0]["status_code"] == 100

    def test_handled_failure_is_still_200(self, client):
        response = client.post(
            "/docusign/webhook", json=_make_connect_payload(envelope_id="UNKNOWN")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is False
        assert body["error"] == "target not found"
        assert body["result"]["where"] == "locate"

    def test_ack_fast_queues_processing(self, client, monkeypatch, store):
        monkeypatch.setenv("LISTENER_ACK_FAST", "true")

        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 200
        body = response.json()
        assert body == {"ok": True, "source": "listener", "queued": True, "id": body["id"]}
        # TestClient runs background tasks before returning
        assert store.records("webhook_logs")[0]["log_state"] == "processed"

    def test_unexpected_error_is_500(self, client):
        from envelope_sync.main import app

        app.state.processor = MagicMock()
        app.state.processor.process.side_effect = RuntimeError("boom")

        response = client.post("/docusign/webhook", json=_make_connect_payload())

        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert body["where"] == "exception"
        assert body["error"] == "boom"
