"""Shared constants for Gatehouse.

All default thresholds, durations and wire names used across modules are
defined here. No magic numbers in other modules — import from here.
Every duration is in milliseconds unless the name says otherwise.
"""

# ─── Time units ──────────────────────────────────────────────────────────────

SECOND_MS: int = 1_000
MINUTE_MS: int = 60 * SECOND_MS
HOUR_MS: int = 60 * MINUTE_MS

# ─── CSRF tokens ─────────────────────────────────────────────────────────────

# Tokens older than this are rejected when the caller does not pass max_age_ms.
DEFAULT_TOKEN_MAX_AGE_MS: int = HOUR_MS

# Random bytes sampled for each token nonce (rendered URL-safe base64).
TOKEN_NONCE_BYTES: int = 16

# A token may claim an issuedAt this far in the future (client/server skew).
# Zero: a token from the future is invalid.
TOKEN_CLOCK_SKEW_MS: int = 0

CSRF_HEADER_NAME: str = "x-csrf-token"
CSRF_BODY_FIELD: str = "csrfToken"
CSRF_RESPONSE_FIELD: str = "csrfToken"

# Read-only verbs never carry a token.
SAFE_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS"})

# Public account-recovery endpoints reached before the client can hold a token.
DEFAULT_CSRF_EXEMPT_PATHS: tuple[str, ...] = (
    "/auth/recovery-questions",
    "/auth/verify-security-questions",
    "/auth/forgot-password-secondary",
)

# ─── Progressive delay / lockout ─────────────────────────────────────────────

# delay(attempts) = min(MAX_DELAY_MS, BASE_DELAY_MS * 2 ** (attempts - 1)) for attempts >= 2
DEFAULT_BASE_DELAY_MS: int = SECOND_MS
DEFAULT_MAX_DELAY_MS: int = MINUTE_MS

DEFAULT_MAX_ATTEMPTS_BEFORE_LOCKOUT: int = 5
DEFAULT_WINDOW_MS: int = 15 * MINUTE_MS
DEFAULT_LOCKOUT_DURATION_MS: int = 15 * MINUTE_MS

# ─── Janitor ─────────────────────────────────────────────────────────────────

# Records idle longer than this (and not actively locked) are evicted.
DEFAULT_RETENTION_MS: int = 24 * HOUR_MS

# Seconds between janitor sweeps.
DEFAULT_JANITOR_INTERVAL_S: float = 3600.0

# ─── Rejection wire format ───────────────────────────────────────────────────

CSRF_REJECTION_STATUS: int = 403
LOCKOUT_STATUS: int = 429

CODE_CSRF_TOKEN_MISSING: str = "CSRF_TOKEN_MISSING"
CODE_CSRF_TOKEN_INVALID: str = "CSRF_TOKEN_INVALID"
CODE_ACCOUNT_LOCKED: str = "ACCOUNT_LOCKED"

# ─── HTTP surface ────────────────────────────────────────────────────────────

# slowapi limit on GET /auth/csrf-token, per client address.
TOKEN_ISSUANCE_RATE_LIMIT: str = "10/minute"

REQUEST_ID_HEADER: str = "X-Gatehouse-Request-ID"
