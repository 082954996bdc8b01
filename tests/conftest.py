"""Root test configuration for Gatehouse.

Every test gets:
  - the admin localhost check disabled (starlette's TestClient reports its
    client host as 'testclient'); admin middleware tests re-enable it;
  - an audit database under tmp_path, so the lifespan never writes to ~/.gatehouse;
  - no GATEHOUSE_* overrides leaking in from the developer's shell;
  - a fresh slowapi storage, so /auth/csrf-token limits do not bleed across tests.
"""

from __future__ import annotations

from typing import Any

import pytest

from gatehouse.gate.limiter import limiter


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    monkeypatch.setenv("GATEHOUSE_ADMIN_LOCALHOST_ONLY", "false")
    monkeypatch.setenv("GATEHOUSE_AUDIT_DB_PATH", str(tmp_path / "audit.db"))
    for name in ("GATEHOUSE_CONFIG", "GATEHOUSE_PORT", "GATEHOUSE_CSRF_SECRET"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset slowapi's in-memory storage between tests."""
    limiter.reset()


# ─── Time doubles for the limiter engine ──────────────────────────────────────


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    """Stands in for the engine's sleep: records each delay and advances the clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[int] = []

    async def __call__(self, delay_ms: int) -> None:
        self.calls.append(delay_ms)
        self.clock.advance(delay_ms)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)

