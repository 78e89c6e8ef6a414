"""HTTP surface: status codes for the webhook endpoints."""
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.db.session import get_db
from app.main import app
from app.models.webhook_event import WebhookEvent
from app.services.idempotency import IdempotencyLedger


@pytest.fixture
def client(db):
    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _body(event_id="evt_http_1"):
    return json.dumps({"id": event_id, "event": "paymentrequest.success", "data": {"id": 1}}).encode()


class TestWebhookRoute:
    @pytest.mark.parametrize("path", ["/webhook", "/payments/webhook"])
    def test_signed_event_acknowledged(self, client, db, sign_body, path):
        raw = _body()
        response = client.post(path, content=raw, headers={"X-Paystack-Signature": sign_body(raw)})
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert db.query(WebhookEvent).one().status == "processed"

    def test_fallback_signature_header(self, client, sign_body):
        raw = _body()
        response = client.post("/webhook", content=raw, headers={"X-Signature": sign_body(raw)})
        assert response.status_code == 200

    def test_missing_signature_is_401(self, client, db):
        response = client.post("/webhook", content=_body())
        assert response.status_code == 401
        assert db.query(WebhookEvent).count() == 0

    def test_invalid_signature_is_401(self, client, db):
        response = client.post("/webhook", content=_body(), headers={"X-Paystack-Signature": "deadbeef"})
        assert response.status_code == 401
        assert db.query(WebhookEvent).count() == 0

    def test_unparseable_body_is_400(self, client, sign_body):
        raw = b"{not json"
        response = client.post("/webhook", content=raw, headers={"X-Paystack-Signature": sign_body(raw)})
        assert response.status_code == 400

    def test_handler_failure_still_200(self, client, db, sign_body):
        raw = json.dumps(
            {"id": "evt_http_2", "event": "charge.success", "data": {"reference": "r", "metadata": {"booking_id": "b"}}}
        ).encode()
        response = client.post("/webhook", content=raw, headers={"X-Paystack-Signature": sign_body(raw)})
        assert response.status_code == 200
        # Unknown booking: acknowledged and not retried.
        assert db.query(WebhookEvent).one().status == "processed"

    def test_bookkeeping_failure_still_200(self, client, db, sign_body):
        raw = _body("evt_http_3")
        with patch.object(IdempotencyLedger, "mark_processed", side_effect=RuntimeError("connection reset")):
            response = client.post("/webhook", content=raw, headers={"X-Paystack-Signature": sign_body(raw)})
        assert response.status_code == 200
        assert response.json() == {"received": True}
        # Left claimed; a redelivery after the lease runs it again.
        assert db.query(WebhookEvent).one().status == "claimed"

    def test_claim_failure_still_200(self, client, db, sign_body):
        raw = _body("evt_http_4")
        with patch.object(IdempotencyLedger, "claim", side_effect=RuntimeError("database unavailable")):
            response = client.post("/webhook", content=raw, headers={"X-Paystack-Signature": sign_body(raw)})
        assert response.status_code == 200
        assert db.query(WebhookEvent).count() == 0


class TestHealthAndMetrics:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert "X-Request-Id" in response.headers

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert b"webhooks_received_total" in response.content
