"""Janitor — periodic eviction of stale rate limit records.

Bounds memory growth of the in-memory store. A record is evicted when BOTH:
  - its last attempt is older than the retention horizon (default 24h), and
  - it has no active lockout.

An active lockout is never evicted early, however old the record is:
dropping it would silently lift the lockout.

Runs as an asyncio task (start()) that sweeps every interval_s seconds;
destroy() cancels the task, is idempotent, and is safe to call from shutdown
paths whether or not start() was ever called.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from gatehouse.constants import DEFAULT_JANITOR_INTERVAL_S, DEFAULT_RETENTION_MS
from gatehouse.limiter.store import RateLimitStore
from gatehouse.utils.clock import Clock, now_ms
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


class Janitor:
    """Sweeps a RateLimitStore on a fixed interval."""

    def __init__(
        self,
        store: RateLimitStore,
        retention_ms: int = DEFAULT_RETENTION_MS,
        interval_s: float = DEFAULT_JANITOR_INTERVAL_S,
        clock: Optional[Clock] = None,
    ) -> None:
        if retention_ms <= 0:
            raise ValueError(f"retention_ms must be positive, got {retention_ms}")
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self._store = store
        self.retention_ms = retention_ms
        self.interval_s = interval_s
        self._clock: Clock = clock or now_ms
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: Optional[int] = None) -> int:
        """Evict stale, unlocked records. Returns the number evicted."""
        now = self._clock() if now is None else now
        expire_before = now - self.retention_ms
        evicted = 0
        # Runs without awaiting, so no check_and_record interleaves with the scan.
        # A request suspended in its delay rewrites its record afterwards and wins.
        for key in self._store:
            record = self._store.get(key)
            if record is None:
                continue
            if record.last_attempt_at >= expire_before or record.is_locked(now):
                continue
            self._store.delete(key)
            evicted += 1
        if evicted:
            logger.info("Janitor evicted stale records", evicted=evicted, remaining=len(self._store))
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.sweep()
            except Exception as exc:  # noqa: BLE001
                logger.error("Janitor sweep failed", error=str(exc), error_type=type(exc).__name__)

    def start(self) -> None:
        """Start the sweep loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Janitor started", interval_s=self.interval_s, retention_ms=self.retention_ms)

    async def destroy(self) -> None:
        """Stop the sweep loop. Safe to call repeatedly or before start()."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Janitor stopped")
