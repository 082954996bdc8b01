"""Gatehouse security audit package.

Re-exports the public API for ergonomic imports:

    from gatehouse.audit import SecurityEvent, AuditBackend, emit_security_event

Layout:
    models.py         — SecurityEvent + EventKind
    protocol.py       — AuditBackend Protocol + EventFilters + NullAuditBackend + emitter
    sqlite_backend.py — LocalSQLiteBackend (aiosqlite, WAL mode, schema version guard)
    factory.py        — create_audit_backend() — backend selection from Config
"""

from gatehouse.audit.models import EVENT_KINDS, EventKind, SecurityEvent
from gatehouse.audit.protocol import (
    AuditBackend,
    EventFilters,
    NullAuditBackend,
    drain_pending_events,
    emit_security_event,
)

__all__ = [
    "EVENT_KINDS",
    "EventKind",
    "SecurityEvent",
    "EventFilters",
    "AuditBackend",
    "NullAuditBackend",
    "drain_pending_events",
    "emit_security_event",
]
