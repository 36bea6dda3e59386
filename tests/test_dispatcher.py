"""Tests for JobDispatcher: admission control, defaults, idempotent re-dispatch."""

import pytest

from brandworks.exceptions import JobValidationError, UnknownQueueError
from brandworks.queues.broker import InMemoryBroker, JobStatus
from brandworks.queues.dispatch import JobDispatcher
from brandworks.schemas.jobs import DispatchOptions
from tests.conftest import USER_ID, make_wizard_payload


@pytest.fixture()
def dispatcher(broker):
    return JobDispatcher(broker)


class TestAdmission:

    @pytest.mark.asyncio
    async def test_valid_wizard_job_is_queued(self, dispatcher, broker):
        payload = make_wizard_payload(step="social-analysis", input={"instagramHandle": "@x"}, creditCost=1)
        result = await dispatcher.dispatch("brand-wizard", payload)

        assert result.queue_name == "brand-wizard"
        assert result.job_id.startswith("brand-wizard-")

        job = await broker.get_job("brand-wizard", result.job_id)
        assert job.status == JobStatus.WAITING
        assert job.payload["step"] == "social-analysis"
        assert job.payload["creditCost"] == 1

    @pytest.mark.asyncio
    async def test_unknown_queue_lists_valid_names(self, dispatcher):
        with pytest.raises(UnknownQueueError) as exc_info:
            await dispatcher.dispatch("nonexistent", {})
        assert "brand-wizard" in exc_info.value.valid_queues
        assert "cleanup" in exc_info.value.valid_queues
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_step_is_rejected(self, dispatcher, broker):
        with pytest.raises(JobValidationError) as exc_info:
            await dispatcher.dispatch("brand-wizard", make_wizard_payload(step="invalid-step"))

        locations = [tuple(error["loc"]) for error in exc_info.value.errors]
        assert ("step",) in locations
        assert (await broker.counts("brand-wizard"))["waiting"] == 0

    @pytest.mark.asyncio
    async def test_non_positive_credit_cost_is_rejected(self, dispatcher):
        with pytest.raises(JobValidationError):
            await dispatcher.dispatch("brand-wizard", make_wizard_payload(creditCost=0))

    @pytest.mark.asyncio
    async def test_missing_fields_are_reported(self, dispatcher):
        with pytest.raises(JobValidationError) as exc_info:
            await dispatcher.dispatch("crm-sync", {"userId": USER_ID})
        missing = {error["loc"][0] for error in exc_info.value.errors}
        assert missing == {"eventType", "data"}

    @pytest.mark.asyncio
    async def test_cleanup_payload(self, dispatcher, broker):
        result = await dispatcher.dispatch("cleanup", {"type": "expired-jobs"})
        job = await broker.get_job("cleanup", result.job_id)
        assert job.payload == {"type": "expired-jobs"}


class TestOptions:

    @pytest.mark.asyncio
    async def test_priority_defaults_to_queue_config(self, dispatcher, broker):
        result = await dispatcher.dispatch("crm-sync", {
            "userId": USER_ID, "eventType": "user.created", "data": {},
        })
        job = await broker.get_job("crm-sync", result.job_id)
        assert job.priority == 5

    @pytest.mark.asyncio
    async def test_priority_override(self, dispatcher, broker):
        result = await dispatcher.dispatch(
            "brand-wizard", make_wizard_payload(), DispatchOptions(priority=7)
        )
        job = await broker.get_job("brand-wizard", result.job_id)
        assert job.priority == 7

    @pytest.mark.asyncio
    async def test_delay_creates_delayed_job(self, dispatcher, broker):
        result = await dispatcher.dispatch(
            "brand-wizard", make_wizard_payload(), DispatchOptions(delay_ms=5_000)
        )
        job = await broker.get_job("brand-wizard", result.job_id)
        assert job.status == JobStatus.DELAYED

    @pytest.mark.asyncio
    async def test_same_job_id_twice_creates_one_job(self, dispatcher, broker):
        options = DispatchOptions(job_id="wizard-abc")
        first = await dispatcher.dispatch("brand-wizard", make_wizard_payload(), options)
        second = await dispatcher.dispatch("brand-wizard", make_wizard_payload(creditCost=9), options)

        assert first.job_id == second.job_id == "wizard-abc"
        counts = await broker.counts("brand-wizard")
        assert counts["waiting"] == 1
        job = await broker.get_job("brand-wizard", "wizard-abc")
        assert job.payload["creditCost"] == 4

    @pytest.mark.asyncio
    async def test_job_id_runs_once(self, dispatcher, broker):
        options = DispatchOptions(job_id="wizard-once")
        await dispatcher.dispatch("brand-wizard", make_wizard_payload(), options)
        claimed = await broker.claim("brand-wizard")
        await broker.complete("brand-wizard", claimed.id, {"ok": True})

        await dispatcher.dispatch("brand-wizard", make_wizard_payload(), options)
        assert await broker.claim("brand-wizard") is None


class _BrokenBroker(InMemoryBroker):
    async def add(self, queue_name, payload, *, job_id, priority, delay_ms=0):
        raise ConnectionError("Connection refused")


class TestBrokerErrors:

    @pytest.mark.asyncio
    async def test_broker_error_propagates_unchanged(self):
        dispatcher = JobDispatcher(_BrokenBroker())
        with pytest.raises(ConnectionError, match="Connection refused"):
            await dispatcher.dispatch("brand-wizard", make_wizard_payload())
