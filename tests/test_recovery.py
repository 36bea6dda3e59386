"""Tests for error recoverability classification."""

import pytest

from brandworks.agents.recovery import (
    ErrorDescription,
    Recoverability,
    classify_error,
    describe_error,
    is_recoverable,
)


class TestClassify:

    @pytest.mark.parametrize("message", [
        "Rate limit exceeded, retry later",
        "Connection timeout",
        "The read operation timed out",
        "read ECONNRESET",
        "getaddrinfo ENOTFOUND api.example.com",
        "Upstream returned 429",
        "502 Bad Gateway",
        "HTTP 503 from image provider",
        "Service temporarily unavailable",
    ])
    def test_transient_errors_are_recoverable(self, message):
        assert classify_error(ErrorDescription("Error", message)) is Recoverability.RECOVERABLE

    @pytest.mark.parametrize("message", [
        "Invalid brand palette: expected 4-6 colors",
        "Permission denied",
        "HTTP 400 Bad Request",
        "",
    ])
    def test_other_errors_are_fatal(self, message):
        assert classify_error(ErrorDescription("Error", message)) is Recoverability.FATAL

    def test_error_type_counts(self):
        assert is_recoverable(ConnectionResetError()) is True
        assert is_recoverable(TimeoutError()) is True
        assert is_recoverable(ValueError("bad input")) is False


class TestDescribe:

    def test_exception(self):
        error = describe_error(RuntimeError("boom"))
        assert error == ErrorDescription("RuntimeError", "boom")

    def test_runtime_payload(self):
        assert describe_error({"message": "429 Too Many Requests", "type": "APIError"}) == \
            ErrorDescription("APIError", "429 Too Many Requests")
        assert describe_error({"error": "oops"}) == ErrorDescription("Error", "oops")

    def test_string_and_none(self):
        assert describe_error("Connection timeout") == ErrorDescription("Error", "Connection timeout")
        assert describe_error(None) == ErrorDescription("Error", "")
