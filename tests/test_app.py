"""Tests for the Flask routes."""

import base64
import hashlib
import hmac
import json
from datetime import datetime
from unittest.mock import patch

import pytest

from app import app
from src.orders.store import InMemoryOrderStore, Order
from src.reconcile.activity_log import ActivityLog
from src.reconcile.schedule import CheckSchedule
from src.services import build_services, set_services
from src.xero.results import ErrorKind, Result
from src.xero.token_store import CredentialRecord, FileTokenStore

SIGNING_KEY = "webhook-signing-key"
ADMIN_TOKEN = "operator-secret"
ADMIN = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


def sign(body: bytes) -> str:
    return base64.b64encode(hmac.new(SIGNING_KEY.encode(), body, hashlib.sha256).digest()).decode()


@pytest.fixture(autouse=True)
def xero_env(monkeypatch):
    for var in ("XERO_CLIENT_ID", "XERO_CLIENT_SECRET", "XERO_WEBHOOK_KEY", "XERO_REDIRECT_URI"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XERO_ADMIN_TOKEN", ADMIN_TOKEN)


@pytest.fixture
def token_store(tmp_path):
    store = FileTokenStore(tmp_path / "tokens.json")
    store.save(CredentialRecord(
        client_id="client_abc",
        client_secret="secret_xyz",
        signing_key=SIGNING_KEY,
    ))
    return store


@pytest.fixture
def order_store():
    return InMemoryOrderStore([
        Order(id=158270, status="pending", created_at=datetime.now(),
              meta={"_xero_invoice_id": "abc123"}),
    ])


@pytest.fixture
def svc(tmp_path, token_store, order_store):
    services = build_services(
        token_store=token_store,
        order_store=order_store,
        activity_log=ActivityLog(),
        schedule=CheckSchedule(tmp_path / "schedule.json"),
    )
    set_services(services)
    yield services
    set_services(None)


@pytest.fixture
def client(svc):
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


# =============================================================================
# Status
# =============================================================================


class TestStatus:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_status_when_not_connected(self, client):
        data = client.get("/xero/status").get_json()

        assert data["connected"] is False
        assert data["message"] == "Not connected"
        assert data["next_check"] != "Not scheduled"

    def test_connected_notice(self, client):
        data = client.get("/?connected=1").get_json()
        assert data["notice"] == "Successfully connected to Xero"


# =============================================================================
# OAuth
# =============================================================================


class TestOAuth:
    def test_authorize_redirects_to_xero(self, client):
        response = client.get("/xero/authorize", headers=ADMIN)

        assert response.status_code == 302
        location = response.headers["Location"]
        assert location.startswith("https://login.xero.com/identity/connect/authorize")
        assert "client_id=client_abc" in location

        with client.session_transaction() as session:
            assert session["oauth_state"] in location

    def test_authorize_without_client_id(self, client, token_store):
        token_store.save(CredentialRecord())

        response = client.get("/xero/authorize", headers=ADMIN)

        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_callback_without_code_fails(self, client):
        assert client.get("/xero/callback").status_code == 400

    def test_callback_with_provider_error_fails(self, client):
        response = client.get("/xero/callback?error=access_denied")
        assert response.status_code == 400

    def test_callback_with_wrong_state_fails(self, client, svc):
        with client.session_transaction() as session:
            session["oauth_state"] = "expected"

        with patch.object(svc.token_manager, "complete_authorization") as mock_complete:
            response = client.get("/xero/callback?code=abc&state=forged")

        assert response.status_code == 400
        mock_complete.assert_not_called()

    def test_callback_without_stored_state_fails(self, client, svc):
        """A callback that this session never started is rejected."""
        with patch.object(svc.token_manager, "complete_authorization") as mock_complete:
            response = client.get("/xero/callback?code=foreign-code&state=anything")

        assert response.status_code == 400
        mock_complete.assert_not_called()

    def test_callback_success_redirects_with_notice(self, client, svc):
        with client.session_transaction() as session:
            session["oauth_state"] = "expected"

        with patch.object(
            svc.token_manager, "complete_authorization", return_value=Result.ok(CredentialRecord())
        ) as mock_complete:
            response = client.get("/xero/callback?code=auth-code&state=expected")

        assert response.status_code == 302
        assert response.headers["Location"].endswith("/?connected=1")
        assert mock_complete.call_args[0][0] == "auth-code"

    def test_state_is_single_use(self, client, svc):
        with client.session_transaction() as session:
            session["oauth_state"] = "expected"

        with patch.object(
            svc.token_manager, "complete_authorization", return_value=Result.ok(CredentialRecord())
        ) as mock_complete:
            client.get("/xero/callback?code=auth-code&state=expected")
            replay = client.get("/xero/callback?code=auth-code&state=expected")

        assert replay.status_code == 400
        assert mock_complete.call_count == 1

    def test_callback_failure_is_terminal(self, client, svc):
        with client.session_transaction() as session:
            session["oauth_state"] = "expected"

        failure = Result.fail(ErrorKind.NO_TENANT, "No Xero organisations connected")
        with patch.object(svc.token_manager, "complete_authorization", return_value=failure):
            response = client.get("/xero/callback?code=auth-code&state=expected")

        assert response.status_code == 400

    def test_disconnect(self, client, token_store):
        record = token_store.load()
        record.access_token = "access"
        record.tenant_id = "tenant-123"
        token_store.save(record)

        response = client.post("/xero/disconnect", headers=ADMIN)

        assert response.get_json()["success"] is True
        stored = token_store.load()
        assert stored.access_token == ""
        assert stored.client_id == "client_abc"


# =============================================================================
# Webhook
# =============================================================================


class TestWebhook:
    def test_intent_to_receive(self, client):
        body = json.dumps({
            "events": [],
            "firstEventSequence": 0,
            "lastEventSequence": 0,
            "entropy": "YSXFMKJBEVVEDQHJMGTA",
        }).encode()

        response = client.post("/xero/webhook", data=body, headers={"x-xero-signature": sign(body)})

        assert response.status_code == 200

    def test_bad_signature_is_unauthorized(self, client, order_store):
        body = b'{"events":[{"resourceId":"abc123","eventType":"UPDATE","eventCategory":"INVOICE"}]}'

        response = client.post("/xero/webhook", data=body, headers={"x-xero-signature": "forged"})

        assert response.status_code == 401
        assert response.get_json() == {"error": "Unauthorized"}
        assert order_store.status_updates == []

    def test_paid_invoice_event_completes_order(self, client, order_store):
        body = json.dumps({
            "events": [{"resourceId": "abc123", "eventType": "UPDATE", "eventCategory": "INVOICE"}],
            "firstEventSequence": 1,
            "lastEventSequence": 1,
        }).encode()

        response = client.post("/xero/webhook", data=body, headers={"x-xero-signature": sign(body)})

        assert response.status_code == 200
        assert order_store.get(158270).status == "completed"

    def test_malformed_body(self, client):
        body = b"{not json"
        response = client.post("/xero/webhook", data=body, headers={"x-xero-signature": sign(body)})
        assert response.status_code == 400


# =============================================================================
# Manual Operations
# =============================================================================


class TestManualOperations:
    def test_check_runs_engine_and_reschedules(self, client, svc):
        with patch.object(svc.status_client, "get_invoice_status", return_value=Result.ok("PAID")):
            data = client.post("/xero/check", headers=ADMIN).get_json()

        assert data["success"] is True
        assert data["summary"]["completed"] == 1
        assert data["next_check"]

    def test_test_invoice_completes_order(self, client, order_store):
        response = client.post("/xero/test-invoice", json={"invoice_number": "WebSales158270"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "order_id": 158270, "status": "completed"}
        assert order_store.get(158270).status == "completed"

    def test_test_invoice_requires_number(self, client):
        assert client.post("/xero/test-invoice", json={}, headers=ADMIN).status_code == 400

    def test_test_invoice_reports_failure_kind(self, client):
        response = client.post("/xero/test-invoice", json={"invoice_number": "INV-0001"}, headers=ADMIN)

        assert response.status_code == 422
        assert response.get_json()["error"] == "InvalidFormat"

    def test_logs_are_newest_first(self, client):
        client.post("/xero/test-invoice", json={"invoice_number": "INV-0001"}, headers=ADMIN)
        client.post("/xero/test-invoice", json={"invoice_number": "WebSales158270"}, headers=ADMIN)

        logs = client.get("/xero/logs?limit=2", headers=ADMIN).get_json()["logs"]

        assert len(logs) == 2
        assert logs[0]["invoice_number"] == "WebSales158270"
        assert logs[1]["invoice_number"] == "INV-0001"


# =============================================================================
# Operator Authorization
# =============================================================================


class TestOperatorAuthorization:
    @pytest.mark.parametrize("method,path", [
        ("get", "/xero/authorize"),
        ("post", "/xero/disconnect"),
        ("post", "/xero/check"),
        ("post", "/xero/test-invoice"),
        ("get", "/xero/logs"),
    ])
    def test_requires_admin_token(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.get_json() == {"error": "Unauthorized"}

    def test_test_invoice_without_token_changes_nothing(self, client, order_store):
        response = client.post("/xero/test-invoice", json={"invoice_number": "WebSales158270"})

        assert response.status_code == 401
        assert order_store.get(158270).status == "pending"
        assert order_store.status_updates == []

    def test_wrong_token_is_rejected(self, client, order_store):
        response = client.post(
            "/xero/test-invoice",
            json={"invoice_number": "WebSales158270"},
            headers={"Authorization": "Bearer guessed"},
        )

        assert response.status_code == 401
        assert order_store.status_updates == []

    def test_disconnect_without_token_keeps_connection(self, client, token_store):
        record = token_store.load()
        record.access_token = "access"
        record.tenant_id = "tenant-123"
        token_store.save(record)

        assert client.post("/xero/disconnect").status_code == 401
        assert token_store.load().tenant_id == "tenant-123"

    def test_check_without_token_does_not_run(self, client, svc):
        with patch.object(svc.engine, "check_paid_invoices") as mock_check:
            assert client.post("/xero/check").status_code == 401

        mock_check.assert_not_called()

    def test_routes_disabled_when_token_unset(self, client, monkeypatch, order_store):
        monkeypatch.delenv("XERO_ADMIN_TOKEN")

        response = client.post(
            "/xero/test-invoice",
            json={"invoice_number": "WebSales158270"},
            headers=ADMIN,
        )

        assert response.status_code == 403
        assert order_store.status_updates == []

    def test_query_token_allows_browser_authorize(self, client):
        response = client.get(f"/xero/authorize?token={ADMIN_TOKEN}")

        assert response.status_code == 302
        assert response.headers["Location"].startswith("https://login.xero.com/")

    def test_status_and_health_stay_open(self, client):
        assert client.get("/xero/status").status_code == 200
        assert client.get("/health").status_code == 200
