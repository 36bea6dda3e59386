"""HTTP API tests: jobs, webhooks, credits, health and error bodies."""

import httpx

from brandworks.api.dependencies import get_webhook_dispatcher
from brandworks.main import app
from brandworks.models.audit import AuditLog
from brandworks.services.credit_ledger import CreditLedger
from brandworks.services.webhook_dispatcher import WebhookDispatcher
from tests.conftest import USER_ID, make_wizard_payload


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert data["broker"] == "memory"

    def test_request_id_propagated(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-abc"})
        assert response.headers["X-Request-ID"] == "req-abc"
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_request_id_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 16


class TestJobEndpoints:

    def test_submit_and_fetch(self, client):
        response = client.post("/api/jobs/brand-wizard", json={"payload": make_wizard_payload()})
        assert response.status_code == 202
        data = response.json()
        assert data["queueName"] == "brand-wizard"
        assert data["jobId"].startswith("brand-wizard-")

        job = client.get(f"/api/jobs/brand-wizard/{data['jobId']}").json()
        assert job["status"] == "waiting"
        assert job["priority"] == 1
        assert job["attemptsMade"] == 0
        assert job["createdAt"] is not None

    def test_resubmitting_same_job_id_returns_existing(self, client):
        body = {"payload": make_wizard_payload(), "options": {"jobId": "wizard-brand-1"}}
        first = client.post("/api/jobs/brand-wizard", json=body).json()
        second = client.post("/api/jobs/brand-wizard", json=body).json()
        assert first == second == {"jobId": "wizard-brand-1", "queueName": "brand-wizard"}

    def test_unknown_queue(self, client):
        response = client.post("/api/jobs/fax-send", json={"payload": {}})
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "UNKNOWN_QUEUE"
        assert "brand-wizard" in body["details"]["valid_queues"]

    def test_invalid_payload(self, client):
        response = client.post("/api/jobs/brand-wizard", json={"payload": make_wizard_payload(creditCost=0)})
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "JOB_VALIDATION_FAILED"
        assert body["details"]["errors"][0]["loc"] == ["creditCost"]

    def test_missing_job(self, client):
        response = client.get("/api/jobs/brand-wizard/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "JOB_NOT_FOUND"

    def test_status_of_unknown_queue(self, client):
        assert client.get("/api/jobs/fax-send/x").json()["error"] == "UNKNOWN_QUEUE"


class TestWebhookEndpoints:

    def _create(self, client, events=("brand.created",)):
        response = client.post("/api/webhooks", json={
            "user_id": USER_ID,
            "url": "https://hooks.example.com/bmn",
            "events": list(events),
        })
        assert response.status_code == 201
        return response.json()

    def test_create_returns_secret_once(self, client, db):
        created = self._create(client, ["brand.created", "logo.generated"])
        assert created["secret"].startswith("whsec_")
        assert created["active"] is True
        assert created["events"] == ["brand.created", "logo.generated"]

        listed = client.get("/api/webhooks", params={"user_id": USER_ID}).json()
        assert len(listed) == 1
        assert "secret" not in listed[0]

        entry = db.query(AuditLog).filter(AuditLog.action == "webhook_created").one()
        assert entry.resource_id == created["id"]

    def test_unknown_event_rejected(self, client):
        response = client.post("/api/webhooks", json={
            "user_id": USER_ID,
            "url": "https://hooks.example.com/bmn",
            "events": ["brand.exploded"],
        })
        assert response.status_code == 422

    def test_deactivate(self, client):
        created = self._create(client)
        response = client.delete(f"/api/webhooks/{created['id']}")
        assert response.status_code == 200
        assert response.json()["active"] is False

    def test_deactivate_unknown(self, client):
        response = client.delete("/api/webhooks/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "WEBHOOK_NOT_FOUND"

    def test_deliveries_empty_then_unknown(self, client):
        created = self._create(client)
        assert client.get(f"/api/webhooks/{created['id']}/deliveries").json() == []
        assert client.get("/api/webhooks/missing/deliveries").status_code == 404

    def test_verify(self, client, session_factory):
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        dispatcher = WebhookDispatcher(session_factory, httpx.AsyncClient(transport=transport))
        app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher

        response = client.post("/api/webhooks/verify", json={
            "url": "https://hooks.example.com/bmn",
            "secret": "whsec_test",
        })

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "statusCode": 204,
            "message": "Webhook URL is reachable and responded successfully.",
        }


class TestCreditEndpoints:

    def test_balance(self, client, db):
        CreditLedger(db).allocate(USER_ID, "starter")

        data = client.get(f"/api/credits/{USER_ID}").json()

        assert data["userId"] == USER_ID
        assert data["balances"]["logo"]["remaining"] == 20
        assert data["balances"]["mockup"]["total"] == 30

    def test_check(self, client, db):
        CreditLedger(db).allocate(USER_ID, "free")

        allowed = client.post(f"/api/credits/{USER_ID}/check", json={"creditType": "logo", "quantity": 4})
        denied = client.post(f"/api/credits/{USER_ID}/check", json={"creditType": "video"})

        assert allowed.json() == {"allowed": True, "remaining": 4, "needsUpgrade": False, "overageAllowed": False}
        assert denied.status_code == 200
        assert denied.json()["allowed"] is False
        assert denied.json()["needsUpgrade"] is True

    def test_check_rejects_unknown_credit_type(self, client):
        response = client.post(f"/api/credits/{USER_ID}/check", json={"creditType": "hologram"})
        assert response.status_code == 422
