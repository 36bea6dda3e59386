"""Tests for structured logging: JSON output, context ids, secret redaction."""

import json
import logging

from brandworks.core.logging_config import _JsonFormatter, _SecretFilter, job_id_var, request_id_var


def _record(msg, *args, **extra):
    record = logging.LogRecord("brandworks.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:

    def test_standard_fields_and_extra(self):
        line = _JsonFormatter().format(_record("Job %s queued", "j1", queue="crm-sync"))
        data = json.loads(line)
        assert data["message"] == "Job j1 queued"
        assert data["level"] == "INFO"
        assert data["logger"] == "brandworks.test"
        assert data["queue"] == "crm-sync"
        assert "request_id" not in data

    def test_context_ids_included(self):
        rid = request_id_var.set("req-1")
        jid = job_id_var.set("brand-wizard-42")
        try:
            data = json.loads(_JsonFormatter().format(_record("working")))
        finally:
            job_id_var.reset(jid)
            request_id_var.reset(rid)

        assert data["request_id"] == "req-1"
        assert data["job_id"] == "brand-wizard-42"


class TestSecretFilter:

    def _filtered(self, msg, *args):
        record = _record(msg, *args)
        _SecretFilter().filter(record)
        return record.getMessage()

    def test_webhook_secret_redacted(self):
        text = self._filtered("Created secret %s", "whsec_0123456789abcdef0123")
        assert "whsec_0123456789abcdef0123" not in text
        assert "***REDACTED***" in text

    def test_signature_redacted_keeping_prefix(self):
        text = self._filtered("X-Signature: sha256=" + "ab" * 32)
        assert text == "X-Signature: sha256=***REDACTED***"

    def test_key_value_token_redacted(self):
        text = self._filtered("refresh_token=abcdefgh12345678 expired")
        assert text == "refresh_token=***REDACTED*** expired"

    def test_plain_messages_untouched(self):
        assert self._filtered("Webhook delivered to 2/2 subscriber(s)") == \
            "Webhook delivered to 2/2 subscriber(s)"
