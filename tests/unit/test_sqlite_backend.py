"""Unit tests for LocalSQLiteBackend — schema, WAL mode, writes, filters, pruning."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from gatehouse.audit.models import SecurityEvent
from gatehouse.audit.protocol import AuditBackend, EventFilters
from gatehouse.audit.sqlite_backend import LocalSQLiteBackend, run_retention_pruner

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _event(
    key: str = "10.0.0.1",
    kind: str = "ACCOUNT_LOCKED",
    gate: str | None = "login",
    timestamp: datetime | None = None,
    **details: Any,
) -> SecurityEvent:
    return SecurityEvent(
        key=key,
        kind=kind,  # type: ignore[arg-type]
        gate=gate,
        timestamp=timestamp or datetime.now(timezone.utc),
        ip_address="10.0.0.1",
        user_agent="pytest",
        details=details,
    )


@pytest.fixture
async def backend(tmp_path: Any):
    db = LocalSQLiteBackend(str(tmp_path / "audit.db"))
    await db.initialize()
    yield db
    await db.close()


# ─── Schema ───────────────────────────────────────────────────────────────────


class TestSchema:

    async def test_satisfies_protocol(self, backend: LocalSQLiteBackend) -> None:
        assert isinstance(backend, AuditBackend)

    async def test_wal_mode_and_version(self, tmp_path: Any) -> None:
        path = tmp_path / "audit.db"
        db = LocalSQLiteBackend(str(path))
        await db.initialize()
        await db.close()

        async with aiosqlite.connect(path) as conn:
            cursor = await conn.execute("PRAGMA journal_mode;")
            assert (await cursor.fetchone())[0] == "wal"
            cursor = await conn.execute("PRAGMA user_version;")
            assert (await cursor.fetchone())[0] == 1

    async def test_reopen_existing_database(self, tmp_path: Any) -> None:
        path = str(tmp_path / "audit.db")
        first = LocalSQLiteBackend(path)
        await first.initialize()
        await first.log_event(_event())
        await first.close()

        second = LocalSQLiteBackend(path)
        await second.initialize()
        assert await second.count_events(EventFilters()) == 1
        await second.close()

    async def test_unsupported_version_refuses(self, tmp_path: Any) -> None:
        path = tmp_path / "audit.db"
        async with aiosqlite.connect(path) as conn:
            await conn.execute("PRAGMA user_version = 7;")
            await conn.commit()

        db = LocalSQLiteBackend(str(path))
        with pytest.raises(RuntimeError, match="schema version: 7"):
            await db.initialize()

    async def test_creates_parent_directory(self, tmp_path: Any) -> None:
        path = tmp_path / "nested" / "dir" / "audit.db"
        db = LocalSQLiteBackend(str(path))
        await db.initialize()
        await db.close()
        assert path.exists()

    async def test_expands_user(self) -> None:
        assert "~" not in LocalSQLiteBackend("~/x/audit.db").db_path


# ─── Writes + queries ─────────────────────────────────────────────────────────


class TestWritesAndQueries:

    async def test_round_trip(self, backend: LocalSQLiteBackend) -> None:
        event = _event(attempts=6, lockout_ms=900_000)
        await backend.log_event(event)

        [stored] = await backend.query_events(EventFilters())
        assert stored.event_id == event.event_id
        assert stored.kind == "ACCOUNT_LOCKED"
        assert stored.gate == "login"
        assert stored.ip_address == "10.0.0.1"
        assert stored.details == {"attempts": 6, "lockout_ms": 900_000}
        assert stored.timestamp == event.timestamp

    async def test_duplicate_event_id_ignored(self, backend: LocalSQLiteBackend) -> None:
        event = _event()
        await backend.log_event(event)
        await backend.log_event(event)
        assert await backend.count_events(EventFilters()) == 1

    async def test_empty_details_read_back_as_dict(self, backend: LocalSQLiteBackend) -> None:
        await backend.log_event(_event())
        [stored] = await backend.query_events(EventFilters())
        assert stored.details == {}

    async def test_log_event_never_raises(self, tmp_path: Any) -> None:
        db = LocalSQLiteBackend(str(tmp_path / "audit.db"))
        # Not initialized
        await db.log_event(_event())

    async def test_filters(self, backend: LocalSQLiteBackend) -> None:
        await backend.log_event(_event(key="a", kind="ACCOUNT_LOCKED", gate="login"))
        await backend.log_event(_event(key="a", kind="SUSPICIOUS_ACTIVITY", gate="login"))
        await backend.log_event(_event(key="b", kind="CSRF_TOKEN_MISSING", gate="csrf"))

        assert await backend.count_events(EventFilters(key="a")) == 2
        assert await backend.count_events(EventFilters(gate="csrf")) == 1
        assert await backend.count_events(EventFilters(kind="SUSPICIOUS_ACTIVITY")) == 1
        assert await backend.count_events(EventFilters(key="a", kind="ACCOUNT_LOCKED")) == 1

    async def test_time_range_and_order(self, backend: LocalSQLiteBackend) -> None:
        base = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        for hours in range(5):
            await backend.log_event(_event(key=f"k{hours}", timestamp=base + timedelta(hours=hours)))

        events = await backend.query_events(
            EventFilters(since=base + timedelta(hours=1), until=base + timedelta(hours=3))
        )
        assert [e.key for e in events] == ["k3", "k2", "k1"]

    async def test_naive_filter_treated_as_utc(self, backend: LocalSQLiteBackend) -> None:
        base = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        await backend.log_event(_event(timestamp=base))
        assert await backend.count_events(EventFilters(since=datetime(2026, 1, 1, 11, 0))) == 1

    async def test_limit_and_offset(self, backend: LocalSQLiteBackend) -> None:
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(10):
            await backend.log_event(_event(key=f"k{i}", timestamp=base + timedelta(minutes=i)))

        page = await backend.query_events(EventFilters(limit=3, offset=2))
        assert [e.key for e in page] == ["k7", "k6", "k5"]
        assert await backend.count_events(EventFilters(limit=3)) == 10

    async def test_sql_injection_in_filter_is_inert(self, backend: LocalSQLiteBackend) -> None:
        await backend.log_event(_event())
        assert await backend.count_events(EventFilters(key="x' OR '1'='1")) == 0
        assert await backend.count_events(EventFilters()) == 1


# ─── Health + retention ───────────────────────────────────────────────────────


class TestHealthAndRetention:

    async def test_health_check(self, backend: LocalSQLiteBackend) -> None:
        assert await backend.health_check() is True

    async def test_health_check_closed(self, tmp_path: Any) -> None:
        db = LocalSQLiteBackend(str(tmp_path / "audit.db"))
        assert await db.health_check() is False

    async def test_prune_old_events(self, backend: LocalSQLiteBackend) -> None:
        now = datetime.now(timezone.utc)
        await backend.log_event(_event(key="old", timestamp=now - timedelta(days=91)))
        await backend.log_event(_event(key="new", timestamp=now - timedelta(days=89)))

        assert await backend.prune_old_events(retention_days=90) == 1
        [remaining] = await backend.query_events(EventFilters())
        assert remaining.key == "new"

    async def test_prune_nothing(self, backend: LocalSQLiteBackend) -> None:
        assert await backend.prune_old_events() == 0

    async def test_close_is_idempotent(self, tmp_path: Any) -> None:
        db = LocalSQLiteBackend(str(tmp_path / "audit.db"))
        await db.initialize()
        await db.close()
        await db.close()

    async def test_retention_pruner_runs_and_cancels(self) -> None:
        backend = AsyncMock(spec=LocalSQLiteBackend)
        real_sleep = asyncio.sleep

        async def fast_sleep(seconds: float) -> None:
            await real_sleep(0)

        with patch("gatehouse.audit.sqlite_backend.asyncio.sleep", fast_sleep):
            task = asyncio.create_task(run_retention_pruner(backend, retention_days=30))
            for _ in range(20):
                if backend.prune_old_events.await_count:
                    break
                await real_sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        backend.prune_old_events.assert_awaited_with(retention_days=30)

    async def test_retention_pruner_survives_errors(self) -> None:
        backend = AsyncMock(spec=LocalSQLiteBackend)
        backend.prune_old_events.side_effect = [RuntimeError("disk full"), 0, 0, 0, 0, 0]
        real_sleep = asyncio.sleep

        async def fast_sleep(seconds: float) -> None:
            await real_sleep(0)

        with patch("gatehouse.audit.sqlite_backend.asyncio.sleep", fast_sleep):
            task = asyncio.create_task(run_retention_pruner(backend))
            for _ in range(50):
                if backend.prune_old_events.await_count >= 2:
                    break
                await real_sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert backend.prune_old_events.await_count >= 2
