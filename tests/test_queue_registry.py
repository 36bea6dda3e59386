"""Tests for the queue registry: every queue has a schema and a complete config."""

import pytest

from brandworks.queues.registry import (
    QUEUE_REGISTRY,
    BackoffType,
    QueueName,
    RetryPolicy,
    get_config,
    lookup,
    queue_names,
)
from brandworks.schemas.jobs import JobPayload


class TestRegistryCompleteness:

    def test_every_queue_name_is_registered(self):
        assert set(QUEUE_REGISTRY) == set(QueueName)

    def test_definitions_are_keyed_by_their_own_name(self):
        for name, definition in QUEUE_REGISTRY.items():
            assert definition.name == name

    def test_every_queue_has_a_payload_schema(self):
        for definition in QUEUE_REGISTRY.values():
            assert issubclass(definition.schema, JobPayload)

    def test_configs_are_sane(self):
        for definition in QUEUE_REGISTRY.values():
            config = definition.config
            assert config.concurrency >= 1
            assert config.timeout_ms > 0
            assert config.retry.attempts >= 1
            assert config.retry.backoff_delay_ms > 0
            assert config.cleanup.completed_count > 0
            assert config.cleanup.failed_count > 0

    def test_queue_names_in_declaration_order(self):
        names = queue_names()
        assert names[0] == "brand-wizard"
        assert names[-1] == "cleanup"
        assert len(names) == len(QueueName)


class TestQueueSettings:

    def test_brand_wizard_config(self):
        config = get_config("brand-wizard")
        assert config.concurrency == 2
        assert config.timeout_ms == 300_000
        assert config.retry == RetryPolicy(2, 5_000, BackoffType.EXPONENTIAL)

    def test_crm_sync_retries_five_times(self):
        assert get_config("crm-sync").retry.attempts == 5

    def test_cleanup_runs_once_at_lowest_priority(self):
        config = get_config("cleanup")
        assert config.retry.attempts == 1
        assert config.retry.backoff_type == BackoffType.FIXED
        assert config.priority == max(d.config.priority for d in QUEUE_REGISTRY.values())


class TestLookup:

    def test_lookup_known(self):
        assert lookup("email-send").name == QueueName.EMAIL_SEND

    def test_lookup_unknown_returns_none(self):
        assert lookup("nonexistent") is None

    def test_get_config_unknown_raises(self):
        with pytest.raises(KeyError):
            get_config("nonexistent")


class TestRetryPolicy:

    def test_exponential_doubles(self):
        policy = RetryPolicy(5, 1000, BackoffType.EXPONENTIAL)
        assert [policy.delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]

    def test_fixed_is_constant(self):
        policy = RetryPolicy(3, 60_000, BackoffType.FIXED)
        assert policy.delay_ms(1) == policy.delay_ms(3) == 60_000
