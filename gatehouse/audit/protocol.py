"""AuditBackend Protocol + EventFilters dataclass + fire-and-forget emitter.

SecurityEvent is defined in gatehouse/audit/models.py.
This module defines the pluggable backend interface (AuditBackend Protocol),
the query filter dataclass (EventFilters), the NullAuditBackend stub, and
emit_security_event(), the only way gates hand events to a backend.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from gatehouse.audit.models import SecurityEvent
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

# Strong references to in-flight audit writes; the event loop only keeps weak ones.
_pending_writes: set[asyncio.Task[None]] = set()


# ─── EventFilters ─────────────────────────────────────────────────────────────


@dataclass
class EventFilters:
    """Query filters for AuditBackend.query_events() and count_events().

    All fields are optional. An empty EventFilters() returns all events up
    to limit=50, newest first.
    """

    kind: Optional[str] = None
    """Filter by event kind, e.g. 'ACCOUNT_LOCKED'."""
    key: Optional[str] = None
    """Filter to events for one rate-limit key."""
    gate: Optional[str] = None
    """Filter to events produced by one gate."""
    since: Optional[datetime] = None
    """Include events with timestamp >= since (UTC)."""
    until: Optional[datetime] = None
    """Include events with timestamp <= until (UTC)."""
    limit: int = 50
    offset: int = 0


# ─── AuditBackend Protocol ────────────────────────────────────────────────────


@runtime_checkable
class AuditBackend(Protocol):
    """Pluggable audit backend interface.

    Implementations: LocalSQLiteBackend, NullAuditBackend.
    Selection via create_audit_backend() factory (audit/factory.py).

    log_event() is always reached through emit_security_event() on request
    paths — fire-and-forget, exceptions never propagate to the gate.
    """

    async def log_event(self, event: SecurityEvent) -> None:
        """Persist a security event. Must NEVER raise."""
        ...

    async def query_events(self, filters: EventFilters) -> list[SecurityEvent]:
        """Events matching filters, newest first."""
        ...

    async def count_events(self, filters: EventFilters) -> int:
        """Count events matching filters (limit/offset ignored)."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the backend is operational. Must not raise."""
        ...

    async def prune_old_events(self, retention_days: int = 90) -> int:
        """Delete events older than retention_days. Returns count of deleted rows."""
        ...

    async def close(self) -> None:
        """Clean up connections and resources. Called during graceful shutdown."""
        ...


# ─── NullAuditBackend ────────────────────────────────────────────────────────


class NullAuditBackend:
    """No-op AuditBackend — used when auditing is disabled and in tests."""

    async def log_event(self, event: SecurityEvent) -> None:
        logger.debug("NullAuditBackend.log_event", kind=event.kind, key=event.key)

    async def query_events(self, filters: EventFilters) -> list[SecurityEvent]:
        return []

    async def count_events(self, filters: EventFilters) -> int:
        return 0

    async def health_check(self) -> bool:
        return True

    async def prune_old_events(self, retention_days: int = 90) -> int:
        return 0

    async def close(self) -> None:
        logger.debug("NullAuditBackend.close")


# ─── Fire-and-forget emission ─────────────────────────────────────────────────


async def _guarded_log(backend: AuditBackend, event: SecurityEvent) -> None:
    try:
        await backend.log_event(event)
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Audit event write failed",
            kind=event.kind,
            key=event.key,
            error=str(exc),
            error_type=type(exc).__name__,
        )


def emit_security_event(backend: Optional[AuditBackend], event: SecurityEvent) -> None:
    """Schedule backend.log_event(event) without waiting for it.

    Safe from synchronous code (e.g. on_limit_reached callbacks) as long as an
    event loop is running. Without a running loop the event is logged and
    dropped; the gate's own response never depends on the audit write.
    """
    if backend is None:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; audit event dropped", kind=event.kind, key=event.key)
        return
    task = loop.create_task(_guarded_log(backend, event))
    _pending_writes.add(task)
    task.add_done_callback(_pending_writes.discard)


async def drain_pending_events() -> None:
    """Wait for in-flight audit writes. Used at shutdown and by tests."""
    if _pending_writes:
        await asyncio.gather(*list(_pending_writes), return_exceptions=True)


# ─── Protocol compliance assertion ────────────────────────────────────────────
# NullAuditBackend must satisfy AuditBackend protocol.
# This assertion runs at import time — catches protocol drift immediately.
assert isinstance(NullAuditBackend(), AuditBackend), (
    "NullAuditBackend does not satisfy AuditBackend protocol — implementation error"
)
