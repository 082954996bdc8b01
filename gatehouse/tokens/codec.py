"""CSRF token codecs.

Two interchangeable implementations of the ``TokenCodec`` protocol:

  TimestampTokenCodec (default):
      token = base64("<unixMillis>:<nonce>")
      Stateless and time-bound only. Anyone who knows the format can mint a
      structurally valid token, so this protects against stale-token replay
      and forgotten tokens, NOT against an attacker who can read the format.

  HmacTokenCodec:
      token = base64("<unixMillis>:<nonce>:<hex hmac-sha256>")
      Same freshness rules, plus a signature over "<unixMillis>:<nonce>" with a
      server secret. Requires a non-empty secret at construction time.

The gate layer depends only on ``TokenCodec``; swapping codecs never touches
gate code. ``validate()`` never raises: every malformed input is ``False``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
from typing import Optional, Protocol, runtime_checkable

from gatehouse.constants import (
    DEFAULT_TOKEN_MAX_AGE_MS,
    TOKEN_CLOCK_SKEW_MS,
    TOKEN_NONCE_BYTES,
)
from gatehouse.utils.clock import Clock, now_ms


@runtime_checkable
class TokenCodec(Protocol):
    """Issue and validate opaque, time-bounded CSRF tokens."""

    def issue(self) -> str:
        ...

    def validate(self, token: object, max_age_ms: Optional[int] = None) -> bool:
        ...


def _b64encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _b64decode(token: object) -> Optional[str]:
    """Strict base64 → UTF-8 text, or None on any decoding failure."""
    if not isinstance(token, str) or not token:
        return None
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        # ValueError covers UnicodeEncodeError/UnicodeDecodeError
        return None


def _parse_timestamp(part: str) -> Optional[int]:
    # str.isdigit() also accepts non-ASCII digits; int() would take "+5" or " 5"
    if not part.isascii() or not part.isdigit():
        return None
    return int(part)


class TimestampTokenCodec:
    """Reference codec: freshness-only tokens, no server-side state.

    Args:
        max_age_ms:    Default maximum token age when validate() gets none.
        clock_skew_ms: Tolerated amount by which issuedAt may lie in the future.
        clock:         Epoch-millisecond clock (injected in tests).
    """

    def __init__(
        self,
        max_age_ms: int = DEFAULT_TOKEN_MAX_AGE_MS,
        clock_skew_ms: int = TOKEN_CLOCK_SKEW_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_age_ms <= 0:
            raise ValueError(f"max_age_ms must be positive, got {max_age_ms}")
        if clock_skew_ms < 0:
            raise ValueError(f"clock_skew_ms must be >= 0, got {clock_skew_ms}")
        self.max_age_ms = max_age_ms
        self.clock_skew_ms = clock_skew_ms
        self._clock: Clock = clock or now_ms

    def _payload(self) -> str:
        # token_urlsafe never emits ':' so the payload always splits cleanly
        return f"{self._clock()}:{secrets.token_urlsafe(TOKEN_NONCE_BYTES)}"

    def issue(self) -> str:
        """Mint a new token. Every call returns a different value."""
        return _b64encode(self._payload())

    def _fresh(self, issued_at: int, max_age_ms: Optional[int]) -> bool:
        limit = self.max_age_ms if max_age_ms is None else max_age_ms
        age = self._clock() - issued_at
        return -self.clock_skew_ms <= age <= limit

    def validate(self, token: object, max_age_ms: Optional[int] = None) -> bool:
        """Return True iff the token decodes to a fresh "<millis>:<nonce>" pair."""
        decoded = _b64decode(token)
        if decoded is None:
            return False
        parts = decoded.split(":")
        if len(parts) != 2:
            return False
        timestamp, nonce = parts
        issued_at = _parse_timestamp(timestamp)
        if issued_at is None or not nonce:
            return False
        return self._fresh(issued_at, max_age_ms)


class HmacTokenCodec(TimestampTokenCodec):
    """Secret-bound codec: the reference format plus an HMAC-SHA256 tag."""

    def __init__(
        self,
        secret: str | bytes,
        max_age_ms: int = DEFAULT_TOKEN_MAX_AGE_MS,
        clock_skew_ms: int = TOKEN_CLOCK_SKEW_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        if not isinstance(secret, (str, bytes)):
            raise TypeError(f"HmacTokenCodec secret must be str or bytes, got {type(secret).__name__}")
        if not secret:
            raise ValueError("HmacTokenCodec requires a non-empty secret")
        super().__init__(max_age_ms=max_age_ms, clock_skew_ms=clock_skew_ms, clock=clock)
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self) -> str:
        payload = self._payload()
        return _b64encode(f"{payload}:{self._sign(payload)}")

    def validate(self, token: object, max_age_ms: Optional[int] = None) -> bool:
        decoded = _b64decode(token)
        if decoded is None:
            return False
        parts = decoded.split(":")
        if len(parts) != 3:
            return False
        timestamp, nonce, signature = parts
        issued_at = _parse_timestamp(timestamp)
        if issued_at is None or not nonce or not signature:
            return False
        expected = self._sign(f"{timestamp}:{nonce}")
        if not hmac.compare_digest(expected, signature):
            return False
        return self._fresh(issued_at, max_age_ms)


# ─── Module-level convenience ────────────────────────────────────────────────

_default_codec = TimestampTokenCodec()


def generate_csrf_token() -> str:
    """Issue a token with the default (timestamp-only) codec."""
    return _default_codec.issue()


def validate_csrf_token(token: object, max_age_ms: int = DEFAULT_TOKEN_MAX_AGE_MS) -> bool:
    """Validate a token with the default (timestamp-only) codec."""
    return _default_codec.validate(token, max_age_ms)
