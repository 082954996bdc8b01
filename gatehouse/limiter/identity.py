"""Request identity and rate-limit key derivation.

The limiter tallies attempts under a *key*. Callers hand the engine either a
key they already built (``str``) or a ``RequestIdentity`` captured from the
incoming request, from which the default key (the client address) is derived.
``derive_key()`` resolves the two cases explicitly.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union, overload

UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class RequestIdentity:
    """What the gate layer knows about the caller of one request."""

    address: str
    """Client network address (request.client.host) or 'unknown'."""
    method: str = "GET"
    path: str = "/"
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    """Authenticated user id, if an upstream dependency set request.state.user_id."""
    body: Mapping[str, Any] = field(default_factory=dict)
    """Parsed JSON object body, or empty when absent / not a JSON object."""

    def body_field(self, name: str) -> Optional[str]:
        value = self.body.get(name)
        return value if isinstance(value, str) and value else None


KeySource = Union[str, RequestIdentity]
KeyGenerator = Callable[[RequestIdentity], str]

# Identity of the request currently inside a rate-limit gate. on_limit_reached
# callbacks only receive (key, record) and read the rest from here.
current_identity: ContextVar[Optional[RequestIdentity]] = ContextVar("current_identity", default=None)


def default_key(identity: RequestIdentity) -> str:
    """The default rate-limit key: the caller's network address."""
    return identity.address or UNKNOWN_ADDRESS


@overload
def derive_key(source: str) -> str: ...


@overload
def derive_key(source: RequestIdentity) -> str: ...


def derive_key(source: KeySource) -> str:
    """Resolve a raw key or a request identity to the rate-limit key."""
    if isinstance(source, RequestIdentity):
        return default_key(source)
    if isinstance(source, str):
        return source
    raise TypeError(f"Expected str or RequestIdentity, got {type(source).__name__}")


# ─── Key generators used by the endpoint presets ─────────────────────────────


def address_and_email_key(identity: RequestIdentity) -> str:
    """'<address>-<email>' so one address cannot lock out every account."""
    return f"{default_key(identity)}-{identity.body_field('email') or 'unknown'}"


def prefixed_user_key(prefix: str) -> KeyGenerator:
    """'<prefix>:<user id or address>' for per-user data-plane limits."""

    def _key(identity: RequestIdentity) -> str:
        return f"{prefix}:{identity.user_id or default_key(identity)}"

    return _key
