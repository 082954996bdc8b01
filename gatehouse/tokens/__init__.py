"""Gatehouse CSRF token package.

Public API:
  - TokenCodec            — protocol consumed by the CSRF gate
  - TimestampTokenCodec   — base64("<unixMillis>:<nonce>"), freshness only
  - HmacTokenCodec        — adds an HMAC-SHA256 tag bound to a server secret
  - generate_csrf_token() / validate_csrf_token() — default-codec helpers
"""

from gatehouse.tokens.codec import (
    HmacTokenCodec,
    TimestampTokenCodec,
    TokenCodec,
    generate_csrf_token,
    validate_csrf_token,
)

__all__ = [
    "TokenCodec",
    "TimestampTokenCodec",
    "HmacTokenCodec",
    "generate_csrf_token",
    "validate_csrf_token",
]
