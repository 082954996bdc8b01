"""SecurityEvent dataclass and type aliases for the Gatehouse audit hook.

Every lockout transition and (optionally) every CSRF rejection produces one
SecurityEvent, handed fire-and-forget to the configured AuditBackend.

IMPORTANT: details MUST NEVER contain CSRF token values, passwords or any
request body other than the identifying fields listed below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from gatehouse.utils.ulid import generate_ulid

# ─── Type Aliases ─────────────────────────────────────────────────────────────

EventKind = Literal[
    "ACCOUNT_LOCKED",
    "MULTIPLE_FAILED_ATTEMPTS",
    "SUSPICIOUS_ACTIVITY",
    "CSRF_TOKEN_MISSING",
    "CSRF_TOKEN_INVALID",
]

EVENT_KINDS: frozenset[str] = frozenset(
    {
        "ACCOUNT_LOCKED",
        "MULTIPLE_FAILED_ATTEMPTS",
        "SUSPICIOUS_ACTIVITY",
        "CSRF_TOKEN_MISSING",
        "CSRF_TOKEN_INVALID",
    }
)


# ─── SecurityEvent ────────────────────────────────────────────────────────────


@dataclass
class SecurityEvent:
    """One security-audit record emitted by a gate.

    Field reference:
        Required at construction: key, kind
        Generated when omitted: event_id (ULID), timestamp (UTC now)
        Optional: gate, ip_address, user_agent, details

    Usage at call sites (non-negotiable):
        emit_security_event(backend, event)   # fire-and-forget ONLY
        # NEVER: await backend.log_event(event) on a request path
    """

    key: str
    """Rate-limit key (address, or address-email) the event concerns."""
    kind: EventKind
    """What happened: lockout, repeated failures, CSRF rejection, ..."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """UTC datetime of the event."""
    event_id: str = field(default_factory=generate_ulid)
    """ULID-format unique identifier for this event."""
    gate: Optional[str] = None
    """Name of the gate that produced the event (e.g. 'login')."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    """Kind-specific context, e.g. {'attempts': 6, 'lockout_ms': 900000}."""

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "key": self.key,
            "kind": self.kind,
            "gate": self.gate,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": self.details,
        }
