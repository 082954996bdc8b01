"""LocalSQLiteBackend — aiosqlite-based async security-event store.

Uses aiosqlite exclusively; nothing in gatehouse/audit/ blocks the event loop.

Features:
  - WAL mode: PRAGMA journal_mode=WAL (concurrent reads while writing)
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch, refuse startup
  - Long-lived connection: opened in initialize(), closed in close()
  - Idempotent writes: INSERT OR IGNORE on event_id UNIQUE constraint
  - prune_old_events(): DELETE WHERE timestamp < cutoff
  - run_retention_pruner(): background asyncio task, daily at 03:00 UTC
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import aiosqlite

from gatehouse.audit.models import EVENT_KINDS, SecurityEvent
from gatehouse.audit.protocol import EventFilters
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_KIND_CHECK = ", ".join(f"'{kind}'" for kind in sorted(EVENT_KINDS))

_CREATE_SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS security_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id    TEXT NOT NULL UNIQUE,
    timestamp   TEXT NOT NULL,
    key         TEXT NOT NULL,
    kind        TEXT NOT NULL CHECK(kind IN ({_KIND_CHECK})),
    gate        TEXT,
    ip_address  TEXT,
    user_agent  TEXT,
    details     TEXT
);

CREATE INDEX IF NOT EXISTS idx_security_timestamp
    ON security_events(timestamp DESC);

CREATE INDEX IF NOT EXISTS idx_security_kind_timestamp
    ON security_events(kind, timestamp DESC);

CREATE INDEX IF NOT EXISTS idx_security_key
    ON security_events(key);
"""

_SCHEMA_VERSION = 1


def _utc_iso(value: datetime) -> str:
    """Normalise to an aware UTC ISO string so lexical order == time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _row_to_event(row: aiosqlite.Row) -> SecurityEvent:
    details_raw: Optional[str] = row["details"]
    return SecurityEvent(
        event_id=row["event_id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        key=row["key"],
        kind=row["kind"],
        gate=row["gate"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        details=json.loads(details_raw) if details_raw else {},
    )


# ─── LocalSQLiteBackend ───────────────────────────────────────────────────────


class LocalSQLiteBackend:
    """Async SQLite audit backend.

    Usage:
        backend = LocalSQLiteBackend("~/.gatehouse/audit.db")
        await backend.initialize()   # raises RuntimeError on schema version mismatch
        emit_security_event(backend, event)   # fire-and-forget
        events = await backend.query_events(EventFilters(kind="ACCOUNT_LOCKED"))
        await backend.close()
    """

    def __init__(self, db_path: str = "~/.gatehouse/audit.db") -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Audit database not initialized; call initialize() first")
        return self._db

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode, and create or verify the schema.

        Raises:
            RuntimeError: If PRAGMA user_version is neither 0 nor 1.
                          The FastAPI lifespan propagates this and refuses startup.
        """
        parent_dir = os.path.dirname(self._db_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._conn.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._conn.executescript(_CREATE_SCHEMA_SQL)
            # executescript may not honour PRAGMA in all SQLite builds
            await self._conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._conn.commit()
            logger.info("audit_db_schema_created", db_path=self._db_path, schema_version=_SCHEMA_VERSION)
        elif current_version == _SCHEMA_VERSION:
            logger.info("audit_db_schema_ok", db_path=self._db_path, schema_version=current_version)
        else:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported audit database schema version: {current_version}. "
                f"Delete {self._db_path} to reset the security event log."
            )

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("audit_db_closed", db_path=self._db_path)

    # ── AuditBackend Protocol Methods ─────────────────────────────────────────

    async def log_event(self, event: SecurityEvent) -> None:
        """Persist a security event. Catches ALL exceptions — never re-raises."""
        try:
            await self._conn.execute(
                """INSERT OR IGNORE INTO security_events
                   (event_id, timestamp, key, kind, gate, ip_address, user_agent, details)
                   VALUES (?,?,?,?,?,?,?,?)""",
                (
                    event.event_id,
                    _utc_iso(event.timestamp),
                    event.key,
                    event.kind,
                    event.gate,
                    event.ip_address,
                    event.user_agent,
                    json.dumps(event.details) if event.details else None,
                ),
            )
            await self._conn.commit()
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                event_id=event.event_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def query_events(self, filters: EventFilters) -> list[SecurityEvent]:
        sql, params = _build_select_sql(filters, count_only=False)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_event(row) for row in rows]

    async def count_events(self, filters: EventFilters) -> int:
        sql, params = _build_select_sql(filters, count_only=True)
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def health_check(self) -> bool:
        try:
            await self._conn.execute("SELECT 1")
            return True
        except Exception:
            return False

    async def prune_old_events(self, retention_days: int = 90) -> int:
        """Delete events older than retention_days. Events exactly at the cutoff are kept."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

        cursor = await self._conn.execute(
            "DELETE FROM security_events WHERE timestamp < ?",
            (cutoff.isoformat(),),
        )
        await self._conn.commit()
        count: int = cursor.rowcount  # type: ignore[assignment]

        if count > 0:
            logger.info("retention_prune_complete", deleted_count=count, retention_days=retention_days)
        return count


# ─── SQL Builder Helper ───────────────────────────────────────────────────────


def _build_select_sql(
    filters: EventFilters, *, count_only: bool
) -> tuple[str, list[Any]]:
    """Build a parameterized SELECT from EventFilters. All values use ? placeholders."""
    if count_only:
        sql = "SELECT COUNT(*) FROM security_events"
    else:
        sql = "SELECT * FROM security_events"

    conditions: list[str] = []
    params: list[Any] = []

    if filters.kind is not None:
        conditions.append("kind = ?")
        params.append(filters.kind)

    if filters.key is not None:
        conditions.append("key = ?")
        params.append(filters.key)

    if filters.gate is not None:
        conditions.append("gate = ?")
        params.append(filters.gate)

    if filters.since is not None:
        conditions.append("timestamp >= ?")
        params.append(_utc_iso(filters.since))

    if filters.until is not None:
        conditions.append("timestamp <= ?")
        params.append(_utc_iso(filters.until))

    if conditions:
        sql += " WHERE " + " AND ".join(conditions)

    if not count_only:
        sql += " ORDER BY timestamp DESC"
        sql += " LIMIT ? OFFSET ?"
        params.extend([int(filters.limit), int(filters.offset)])

    return sql, params


# ─── Background Retention Pruner ──────────────────────────────────────────────


async def run_retention_pruner(
    backend: LocalSQLiteBackend,
    retention_days: int = 90,
) -> None:
    """Background task: prune_old_events() daily at 03:00 UTC.

    Cancelled cleanly on shutdown via task.cancel(). Any other exception is
    logged and the prune is retried an hour later.
    """
    while True:
        try:
            now = datetime.now(timezone.utc)
            next_run = now.replace(hour=3, minute=0, second=0, microsecond=0)
            if next_run <= now:
                next_run += timedelta(days=1)
            sleep_seconds = (next_run - now).total_seconds()
            logger.debug("retention_pruner_scheduled", next_run_utc=next_run.isoformat())
            await asyncio.sleep(sleep_seconds)
            await backend.prune_old_events(retention_days=retention_days)

        except asyncio.CancelledError:
            logger.info("retention_pruner_cancelled")
            raise

        except Exception as exc:
            logger.error(
                "retention_prune_error",
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=3600,
            )
            await asyncio.sleep(3600)
