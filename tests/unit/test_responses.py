"""Unit tests for gatehouse.gate.responses."""

from __future__ import annotations

import json

import pytest

from gatehouse.constants import MINUTE_MS
from gatehouse.gate.responses import (
    GateRejection,
    build_csrf_rejection,
    build_lockout_rejection,
)


class TestCsrfRejection:

    def test_missing(self) -> None:
        rejection = build_csrf_rejection("CSRF_TOKEN_MISSING")
        assert rejection.status_code == 403
        assert rejection.body == {"error": "CSRF token required", "code": "CSRF_TOKEN_MISSING"}
        assert rejection.headers == {}

    def test_invalid(self) -> None:
        rejection = build_csrf_rejection("CSRF_TOKEN_INVALID")
        assert rejection.status_code == 403
        assert rejection.body == {
            "error": "Invalid or expired CSRF token",
            "code": "CSRF_TOKEN_INVALID",
        }

    def test_unknown_code_raises(self) -> None:
        with pytest.raises(ValueError):
            build_csrf_rejection("CSRF_TOKEN_STALE")


class TestLockoutRejection:

    def test_full_lockout(self) -> None:
        rejection = build_lockout_rejection(15 * MINUTE_MS)
        assert rejection.status_code == 429
        assert rejection.code == "ACCOUNT_LOCKED"
        assert rejection.body["error"] == "Account temporarily locked. Try again in 15 minute(s)."
        assert rejection.body["retryAfter"] == 900
        assert rejection.headers == {"Retry-After": "900"}

    @pytest.mark.parametrize(
        "retry_after_ms, minutes, seconds",
        [
            (1, 1, 1),
            (999, 1, 1),
            (1001, 1, 2),
            (60_000, 1, 60),
            (60_001, 2, 61),
            (0, 1, 1),
        ],
    )
    def test_rounds_up(self, retry_after_ms: int, minutes: int, seconds: int) -> None:
        rejection = build_lockout_rejection(retry_after_ms)
        assert f"in {minutes} minute(s)." in rejection.body["error"]
        assert rejection.body["retryAfter"] == seconds
        assert rejection.headers["Retry-After"] == str(seconds)


class TestGateRejection:

    def test_to_response(self) -> None:
        response = build_lockout_rejection(2000).to_response()
        assert response.status_code == 429
        assert response.headers["retry-after"] == "2"
        assert json.loads(response.body)["code"] == "ACCOUNT_LOCKED"

    def test_is_an_exception(self) -> None:
        with pytest.raises(GateRejection) as exc_info:
            raise build_csrf_rejection("CSRF_TOKEN_MISSING")
        assert exc_info.value.code == "CSRF_TOKEN_MISSING"
        assert str(exc_info.value) == "CSRF_TOKEN_MISSING"

    def test_code_defaults_to_empty(self) -> None:
        assert GateRejection(418, {"error": "teapot"}).code == ""
