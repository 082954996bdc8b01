"""Unit tests for gatehouse.tokens.codec — CSRF token issue / validate.

Covers:
  - round-trip: a fresh token validates
  - expiry: 2h-old token fails at 1h, passes at 2h + 1ms
  - malformation: non-base64, wrong colon count, bad timestamps → False, never raises
  - future timestamps beyond the skew tolerance
  - HmacTokenCodec: signature binding, tampering, missing secret
"""

from __future__ import annotations

import base64
from typing import Any

import pytest

from gatehouse.constants import HOUR_MS
from gatehouse.tokens.codec import (
    HmacTokenCodec,
    TimestampTokenCodec,
    TokenCodec,
    generate_csrf_token,
    validate_csrf_token,
)

NOW = 1_700_000_000_000


def _encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _codec(now: int = NOW, **kwargs: Any) -> TimestampTokenCodec:
    return TimestampTokenCodec(clock=lambda: now, **kwargs)


# ─── Round trip ───────────────────────────────────────────────────────────────


class TestIssue:
    """issue() produces distinct, decodable '<millis>:<nonce>' tokens."""

    def test_fresh_token_validates(self) -> None:
        codec = _codec()
        assert codec.validate(codec.issue(), 1) is True

    def test_fresh_token_validates_with_default_max_age(self) -> None:
        codec = _codec()
        assert codec.validate(codec.issue()) is True

    def test_tokens_are_unique(self) -> None:
        codec = _codec()
        tokens = {codec.issue() for _ in range(500)}
        assert len(tokens) == 500

    def test_decoded_format(self) -> None:
        decoded = base64.b64decode(_codec().issue()).decode("utf-8")
        timestamp, nonce = decoded.split(":")
        assert timestamp == str(NOW)
        # 16 random bytes render as at least 22 url-safe characters
        assert len(nonce) >= 22

    def test_token_is_header_safe(self) -> None:
        token = _codec().issue()
        assert token.isascii()
        assert not any(ch.isspace() for ch in token)

    def test_module_helpers_round_trip(self) -> None:
        assert validate_csrf_token(generate_csrf_token()) is True

    def test_codecs_satisfy_protocol(self) -> None:
        assert isinstance(_codec(), TokenCodec)
        assert isinstance(HmacTokenCodec("s3cret"), TokenCodec)


# ─── Expiry ───────────────────────────────────────────────────────────────────


class TestExpiry:
    """Age is measured against the injected clock."""

    def test_two_hour_old_token_rejected_at_one_hour(self) -> None:
        token = _encode(f"{NOW - 2 * HOUR_MS}:abcdef")
        assert _codec().validate(token, max_age_ms=3_600_000) is False

    def test_two_hour_old_token_accepted_at_two_hours_plus_one(self) -> None:
        token = _encode(f"{NOW - 2 * HOUR_MS}:abcdef")
        assert _codec().validate(token, max_age_ms=7_200_001) is True

    def test_age_exactly_max_age_accepted(self) -> None:
        token = _encode(f"{NOW - 1000}:abcdef")
        assert _codec().validate(token, max_age_ms=1000) is True

    def test_constructor_max_age_is_default(self) -> None:
        token = _encode(f"{NOW - 5000}:abcdef")
        assert _codec(max_age_ms=4000).validate(token) is False
        assert _codec(max_age_ms=6000).validate(token) is True

    def test_future_token_rejected(self) -> None:
        token = _encode(f"{NOW + 1}:abcdef")
        assert _codec().validate(token) is False

    def test_future_token_within_skew_accepted(self) -> None:
        token = _encode(f"{NOW + 50}:abcdef")
        assert _codec(clock_skew_ms=100).validate(token) is True
        assert _codec(clock_skew_ms=10).validate(token) is False


# ─── Malformation ─────────────────────────────────────────────────────────────


class TestMalformedTokens:
    """Every malformed input yields False; validate() never raises."""

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "not base64 at all!!",
            "%%%%",
            "YWJj=",  # bad padding
            _encode("no-colon-here"),
            _encode(f"{NOW}:a:b"),
            _encode(":abcdef"),
            _encode(f"{NOW}:"),
            _encode("12ab:abcdef"),
            _encode("-5:abcdef"),
            _encode("+5:abcdef"),
            _encode(" 5:abcdef"),
            _encode("١٢٣:abcdef"),  # non-ASCII digits
            base64.b64encode(b"\xff\xfe:\x00").decode("ascii"),
        ],
    )
    def test_rejected(self, token: str) -> None:
        assert _codec().validate(token) is False

    @pytest.mark.parametrize("token", [None, 123, b"bytes", ["list"], {"a": 1}])
    def test_non_string_rejected(self, token: Any) -> None:
        assert _codec().validate(token) is False


class TestConstruction:
    def test_non_positive_max_age_raises(self) -> None:
        with pytest.raises(ValueError):
            TimestampTokenCodec(max_age_ms=0)

    def test_negative_skew_raises(self) -> None:
        with pytest.raises(ValueError):
            TimestampTokenCodec(clock_skew_ms=-1)


# ─── HMAC variant ─────────────────────────────────────────────────────────────


class TestHmacTokenCodec:
    """Signed tokens: only the holder of the secret can mint valid ones."""

    def test_round_trip(self) -> None:
        codec = HmacTokenCodec("s3cret", clock=lambda: NOW)
        assert codec.validate(codec.issue()) is True

    def test_other_secret_rejects(self) -> None:
        token = HmacTokenCodec("s3cret", clock=lambda: NOW).issue()
        assert HmacTokenCodec("other", clock=lambda: NOW).validate(token) is False

    def test_unsigned_token_rejected(self) -> None:
        token = _codec().issue()
        assert HmacTokenCodec("s3cret", clock=lambda: NOW).validate(token) is False

    def test_tampered_timestamp_rejected(self) -> None:
        codec = HmacTokenCodec("s3cret", clock=lambda: NOW)
        timestamp, nonce, signature = base64.b64decode(codec.issue()).decode().split(":")
        forged = _encode(f"{int(timestamp) + 1}:{nonce}:{signature}")
        assert codec.validate(forged) is False

    def test_signed_but_expired_rejected(self) -> None:
        issued = HmacTokenCodec("s3cret", clock=lambda: NOW - 2 * HOUR_MS).issue()
        assert HmacTokenCodec("s3cret", clock=lambda: NOW).validate(issued) is False

    def test_empty_secret_raises(self) -> None:
        with pytest.raises(ValueError):
            HmacTokenCodec("")

    def test_non_string_secret_raises(self) -> None:
        with pytest.raises(TypeError):
            HmacTokenCodec(12345)  # type: ignore[arg-type]

    def test_bytes_secret_accepted(self) -> None:
        codec = HmacTokenCodec(b"\x00\x01binary", clock=lambda: NOW)
        assert codec.validate(codec.issue()) is True
