"""Unit tests for gatehouse.utils.logger."""

from __future__ import annotations

import structlog

from gatehouse.utils.logger import (
    REDACTED,
    bind_request_id,
    clear_request_id,
    redact_secrets,
)


class TestRedactSecrets:

    def test_sensitive_values_masked(self) -> None:
        event = redact_secrets(
            None,  # type: ignore[arg-type]
            "info",
            {"event": "x", "csrf_token": "abc", "password": "hunter2", "hmac_secret": "k"},
        )
        assert event["csrf_token"] == REDACTED
        assert event["password"] == REDACTED
        assert event["hmac_secret"] == REDACTED
        assert event["event"] == "x"

    def test_other_keys_untouched(self) -> None:
        event = redact_secrets(None, "info", {"event": "x", "key": "10.0.0.1", "attempts": 3})  # type: ignore[arg-type]
        assert event == {"event": "x", "key": "10.0.0.1", "attempts": 3}

    def test_none_left_as_none(self) -> None:
        event = redact_secrets(None, "info", {"event": "x", "token": None})  # type: ignore[arg-type]
        assert event["token"] is None


class TestRequestId:

    def test_bind_and_clear(self) -> None:
        bind_request_id("01HZZZZZZZZZZZZZZZZZZZZZZZ")
        assert structlog.contextvars.get_contextvars()["request_id"] == "01HZZZZZZZZZZZZZZZZZZZZZZZ"
        clear_request_id()
        assert "request_id" not in structlog.contextvars.get_contextvars()

    def test_clear_without_bind(self) -> None:
        clear_request_id()
        assert "request_id" not in structlog.contextvars.get_contextvars()
