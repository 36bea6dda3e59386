"""Tests for the outbound webhook delivery engine.

Subscriber endpoints are simulated with httpx.MockTransport; backoff waits
are recorded instead of slept.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from brandworks.models.webhook import WebhookDelivery
from brandworks.repositories.webhook_repository import WebhookConfigRepository
from brandworks.services.webhook_dispatcher import (
    SIGNATURE_HEADER,
    WebhookDispatcher,
    canonical_json,
    sign_payload,
    verify_signature,
)
from tests.conftest import BRAND_ID, USER_ID

FIXED_NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Endpoint:
    """Mock subscriber: answers with scripted status codes and records requests."""

    def __init__(self, *statuses: int, body: str = "ok"):
        self.statuses = list(statuses) or [200]
        self.body = body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text=self.body)


def _dispatcher(session_factory, handler, sleep=None, **kwargs) -> WebhookDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookDispatcher(
        session_factory,
        client,
        max_attempts=kwargs.pop("max_attempts", 3),
        base_delay_ms=kwargs.pop("base_delay_ms", 1000),
        sleep=sleep or SleepRecorder(),
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


def _subscribe(db, events, url="https://hooks.example.com/bmn", user_id=USER_ID):
    return WebhookConfigRepository(db).create(user_id, url, events)


def _deliveries(db, config_id):
    db.expire_all()
    return (
        db.query(WebhookDelivery)
        .filter(WebhookDelivery.webhook_config_id == config_id)
        .order_by(WebhookDelivery.attempt)
        .all()
    )


class TestSigning:

    def test_signature_round_trips(self):
        body = canonical_json({"event": "brand.created", "data": {"b": 1, "a": 2}})
        header = sign_payload("whsec_test", body)

        assert header.startswith("sha256=")
        assert verify_signature(body.encode(), header, "whsec_test") is True

    def test_wrong_secret_or_tampered_body_rejected(self):
        body = canonical_json({"event": "brand.created"})
        header = sign_payload("whsec_test", body)

        assert verify_signature(body.encode(), header, "other") is False
        assert verify_signature(body.encode() + b" ", header, "whsec_test") is False
        assert verify_signature(body.encode(), header[7:], "whsec_test") is False
        assert verify_signature(body.encode(), "", "whsec_test") is False

    def test_canonical_json_sorts_keys(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


class TestDispatch:

    @pytest.mark.asyncio
    async def test_delivers_signed_envelope(self, db, session_factory):
        config = _subscribe(db, ["brand.created"])
        endpoint = Endpoint(200)
        dispatcher = _dispatcher(session_factory, endpoint)

        await dispatcher.dispatch(USER_ID, "brand.created", {"brandId": BRAND_ID})

        assert len(endpoint.requests) == 1
        request = endpoint.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["user-agent"] == "BrandMeNow-Webhooks/1.0"
        assert verify_signature(request.content, request.headers[SIGNATURE_HEADER], config.secret)

        envelope = json.loads(request.content)
        assert envelope == {
            "event": "brand.created",
            "timestamp": FIXED_NOW.isoformat(),
            "data": {"brandId": BRAND_ID},
        }

        rows = _deliveries(db, config.id)
        assert len(rows) == 1
        assert rows[0].success is True
        assert rows[0].status_code == 200
        assert rows[0].attempt == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_event_not_sent(self, db, session_factory):
        _subscribe(db, ["logo.generated"])
        endpoint = Endpoint(200)

        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.created", {})

        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_inactive_config_not_sent(self, db, session_factory):
        config = _subscribe(db, ["brand.created"])
        WebhookConfigRepository(db).deactivate(config.id)
        endpoint = Endpoint(200)

        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.created", {})

        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_other_users_configs_not_sent(self, db, session_factory):
        _subscribe(db, ["brand.created"], user_id="someone-else")
        endpoint = Endpoint(200)

        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.created", {})

        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_unknown_event_dropped(self, db, session_factory):
        _subscribe(db, ["brand.created"])
        endpoint = Endpoint(200)

        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.exploded", {})

        assert endpoint.requests == []


class TestRetries:

    @pytest.mark.asyncio
    async def test_three_failures_log_three_attempts(self, db, session_factory):
        config = _subscribe(db, ["order.created"])
        endpoint = Endpoint(500, body="boom")
        sleep = SleepRecorder()

        await _dispatcher(session_factory, endpoint, sleep).dispatch(USER_ID, "order.created", {"orderId": "o1"})

        assert len(endpoint.requests) == 3
        # No wait after the last attempt.
        assert sleep.delays == [1.0, 2.0]

        rows = _deliveries(db, config.id)
        assert [r.attempt for r in rows] == [1, 2, 3]
        assert all(r.success is False for r in rows)
        assert all(r.status_code == 500 for r in rows)
        assert rows[0].error_message == "HTTP 500"
        assert rows[0].response_body == "boom"

    @pytest.mark.asyncio
    async def test_success_on_second_attempt_stops(self, db, session_factory):
        config = _subscribe(db, ["order.created"])
        endpoint = Endpoint(503, 204)
        sleep = SleepRecorder()

        await _dispatcher(session_factory, endpoint, sleep).dispatch(USER_ID, "order.created", {})

        assert len(endpoint.requests) == 2
        assert sleep.delays == [1.0]
        rows = _deliveries(db, config.id)
        assert [(r.attempt, r.success) for r in rows] == [(1, False), (2, True)]

    @pytest.mark.asyncio
    async def test_timeout_recorded_with_status_zero(self, db, session_factory):
        config = _subscribe(db, ["brand.updated"])

        def _timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        dispatcher = _dispatcher(session_factory, _timeout, max_attempts=1)
        await dispatcher.dispatch(USER_ID, "brand.updated", {})

        rows = _deliveries(db, config.id)
        assert len(rows) == 1
        assert rows[0].status_code == 0
        assert rows[0].success is False
        assert "timed out" in rows[0].error_message

    @pytest.mark.asyncio
    async def test_connection_error_does_not_raise(self, db, session_factory):
        config = _subscribe(db, ["brand.updated"])

        def _refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        await _dispatcher(session_factory, _refused, max_attempts=2).dispatch(USER_ID, "brand.updated", {})

        rows = _deliveries(db, config.id)
        assert [r.status_code for r in rows] == [0, 0]
        assert rows[0].error_message == "connection refused"

    @pytest.mark.asyncio
    async def test_unparseable_url_logged_as_failed_attempts(self, db, session_factory):
        config = _subscribe(db, ["brand.created"], url="http://[::1")
        endpoint = Endpoint(200)

        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.created", {})

        rows = _deliveries(db, config.id)
        assert [(r.status_code, r.success) for r in rows] == [(0, False)] * 3
        assert rows[0].error_message
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_delivery_log_failure_does_not_stop_retries(self, db, session_factory, monkeypatch):
        _subscribe(db, ["brand.updated"])
        endpoint = Endpoint(500)

        def _broken(self, **fields):
            raise RuntimeError("audit store offline")

        monkeypatch.setattr(WebhookConfigRepository, "record_delivery", _broken)
        await _dispatcher(session_factory, endpoint).dispatch(USER_ID, "brand.updated", {})

        assert len(endpoint.requests) == 3

    @pytest.mark.asyncio
    async def test_response_body_truncated(self, db, session_factory):
        config = _subscribe(db, ["brand.updated"])
        endpoint = Endpoint(200, body="x" * 5000)

        await _dispatcher(session_factory, endpoint, response_body_limit=100).dispatch(
            USER_ID, "brand.updated", {}
        )

        assert len(_deliveries(db, config.id)[0].response_body) == 100

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_affect_others(self, db, session_factory):
        bad = _subscribe(db, ["logo.generated"], url="https://bad.example.com/hook")
        good = _subscribe(db, ["logo.generated"], url="https://good.example.com/hook")

        def handler(request):
            if request.url.host == "bad.example.com":
                return httpx.Response(500)
            return httpx.Response(200)

        await _dispatcher(session_factory, handler).dispatch(USER_ID, "logo.generated", {})

        assert len(_deliveries(db, bad.id)) == 3
        good_rows = _deliveries(db, good.id)
        assert len(good_rows) == 1
        assert good_rows[0].success is True

    @pytest.mark.asyncio
    async def test_background_dispatch_finishes_on_close(self, db, session_factory):
        config = _subscribe(db, ["brand.updated"])
        dispatcher = _dispatcher(session_factory, Endpoint(200))

        dispatcher.dispatch_in_background(USER_ID, "brand.updated", {"brandId": BRAND_ID})
        await dispatcher.aclose()

        assert len(_deliveries(db, config.id)) == 1


class TestVerify:

    @pytest.mark.asyncio
    async def test_reachable(self, session_factory):
        endpoint = Endpoint(200)
        result = await _dispatcher(session_factory, endpoint).verify("https://hooks.example.com/x", "s3cret")

        assert result.success is True
        assert result.status_code == 200
        assert "reachable" in result.message

        request = endpoint.requests[0]
        assert verify_signature(request.content, request.headers[SIGNATURE_HEADER], "s3cret")
        assert json.loads(request.content)["event"] == "webhook.test"

    @pytest.mark.asyncio
    async def test_http_error_status(self, session_factory):
        result = await _dispatcher(session_factory, Endpoint(404)).verify("https://hooks.example.com/x", "s")

        assert result.success is False
        assert result.status_code == 404
        assert result.message == "Webhook URL responded with HTTP 404."

    @pytest.mark.asyncio
    async def test_unreachable(self, session_factory):
        def _refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await _dispatcher(session_factory, _refused).verify("https://hooks.example.com/x", "s")

        assert result.success is False
        assert result.status_code == 0
        assert result.message.startswith("Failed to reach webhook URL")

    @pytest.mark.asyncio
    async def test_unparseable_url(self, session_factory):
        result = await _dispatcher(session_factory, Endpoint(200)).verify("http://[::1", "s")

        assert result.success is False
        assert result.status_code == 0
        assert result.message.startswith("Failed to reach webhook URL")

    @pytest.mark.asyncio
    async def test_verify_does_not_retry_or_log(self, db, session_factory):
        endpoint = Endpoint(500)
        await _dispatcher(session_factory, endpoint).verify("https://hooks.example.com/x", "s")

        assert len(endpoint.requests) == 1
        assert db.query(WebhookDelivery).count() == 0
