"""Tests for the CRM seam: payload sanitization, token refresh, crm-sync processor."""

import asyncio

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis

from brandworks.exceptions import CrmAuthError
from brandworks.queues.worker import QueueWorker
from brandworks.services.crm import (
    CrmSyncProcessor,
    CrmTokenProvider,
    RedisTokenStore,
    TokenPair,
    sanitize_crm_data,
)
from tests.conftest import USER_ID

NOW = 1_700_000_000.0


@pytest_asyncio.fixture()
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture()
def store(redis_client):
    return RedisTokenStore(redis_client, key="test:crm:tokens")


class Refresher:
    def __init__(self, fresh=None, error=None):
        self.fresh = fresh
        self.error = error
        self.calls = []

    async def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.fresh


class TestSanitize:

    def test_blocked_fields_removed(self):
        clean = sanitize_crm_data({
            "email": "owner@example.com",
            "password": "hunter2",
            "Stripe_Customer_ID": "cus_123",
            "API_KEY": "sk-live",
        })
        assert clean == {"email": "owner@example.com"}

    def test_nested_objects_sanitized(self):
        clean = sanitize_crm_data({"profile": {"name": "Ada", "ssn": "000-00-0000"}, "tier": "pro"})
        assert clean == {"profile": {"name": "Ada"}, "tier": "pro"}

    def test_input_not_modified(self):
        data = {"credit_card": "4242"}
        sanitize_crm_data(data)
        assert data == {"credit_card": "4242"}

    def test_stripped_values_never_logged(self, caplog):
        sanitize_crm_data({"password": "hunter2"})
        assert "password" in caplog.text
        assert "hunter2" not in caplog.text


class TestTokenProvider:

    @pytest.mark.asyncio
    async def test_no_tokens_raises(self, store):
        provider = CrmTokenProvider(store, Refresher(), clock=lambda: NOW)
        with pytest.raises(CrmAuthError):
            await provider.get_access_token()

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, store):
        await store.set(TokenPair("access-1", "refresh-1", NOW + 3600), 7200)
        refresher = Refresher()

        token = await CrmTokenProvider(store, refresher, clock=lambda: NOW).get_access_token()

        assert token == "access-1"
        assert refresher.calls == []

    @pytest.mark.asyncio
    async def test_refreshes_within_five_minutes_of_expiry(self, store, redis_client):
        await store.set(TokenPair("access-1", "refresh-1", NOW + 240), 3840)
        refresher = Refresher(fresh=TokenPair("access-2", "refresh-2", NOW + 86400))

        token = await CrmTokenProvider(store, refresher, clock=lambda: NOW).get_access_token()

        assert token == "access-2"
        assert refresher.calls == ["refresh-1"]
        stored = await store.get()
        assert stored.refresh_token == "refresh-2"
        # Kept an hour past access token expiry.
        ttl = await redis_client.ttl("test:crm:tokens")
        assert 86400 < ttl <= 86400 + 3600

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, store):
        await store.set(TokenPair("access-1", "refresh-1", NOW + 10), 3610)
        refresher = Refresher(fresh=TokenPair("access-2", "refresh-2", NOW + 86400))
        provider = CrmTokenProvider(store, refresher, clock=lambda: NOW)

        tokens = await asyncio.gather(*(provider.get_access_token() for _ in range(5)))

        assert tokens == ["access-2"] * 5
        assert refresher.calls == ["refresh-1"]

    @pytest.mark.asyncio
    async def test_refresh_failure_wrapped(self, store):
        await store.set(TokenPair("access-1", "refresh-1", NOW), 3600)
        provider = CrmTokenProvider(store, Refresher(error=RuntimeError("invalid_grant")), clock=lambda: NOW)

        with pytest.raises(CrmAuthError) as exc_info:
            await provider.get_access_token()
        assert "invalid_grant" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreadable_tokens_treated_as_missing(self, store, redis_client):
        await redis_client.set("test:crm:tokens", "not json")
        assert await store.get() is None


class TestCrmSyncProcessor:

    @pytest.mark.asyncio
    async def test_sends_sanitized_data(self, broker):
        sent = []

        async def sender(user_id, event_type, data):
            sent.append((user_id, event_type, data))

        await broker.add("crm-sync", {
            "userId": USER_ID,
            "eventType": "wizard.step-completed",
            "data": {"step": "logo-generation", "password": "x"},
        }, job_id="crm-1", priority=5)
        job = await broker.claim("crm-sync")

        await QueueWorker(broker, "crm-sync", CrmSyncProcessor(sender)).process_job(job)

        assert sent == [(USER_ID, "wizard.step-completed", {"step": "logo-generation"})]
        stored = await broker.get_job("crm-sync", "crm-1")
        assert stored.result == {"synced": True, "eventType": "wizard.step-completed"}
