"""Progressive-delay / lockout limiter engine.

Per key the engine moves through FRESH → DELAYED → LOCKED. A lockout that has
run out drops the key back to FRESH, and a successful guarded operation
removes the key's record entirely.

check_and_record(key, config):
  1. Read the record (absent = zero attempts, never attempted, not locked).
  2. Active lockout → reject with retry_after = lockout_until - now. No mutation.
  3. Expired lockout, or idle longer than window_ms → attempts restart at 0.
  4. delay = progressive_delay(attempts); suspend the caller for delay ms.
  5. attempts += 1, last_attempt_at = now.
  6. attempts > max_attempts_before_lockout → lockout_until = now + lockout_duration_ms,
     call on_limit_reached(key, record) once, reject.
  7. Otherwise write the record back and allow.

Concurrency: the delay is computed from the record as read *before* the
suspension and the new record is written *after* it, last write wins. Two
near-simultaneous requests for the same key can therefore both read N and both
write N+1, undercounting concurrent abuse. The limiter is single-process and
best-effort; see tests/unit/test_limiter_engine.py::TestConcurrency.

A request cancelled while suspended writes nothing: the record is replaced as
a whole after the delay, so there is no partially-updated state to observe.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from gatehouse.constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_LOCKOUT_DURATION_MS,
    DEFAULT_MAX_ATTEMPTS_BEFORE_LOCKOUT,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_WINDOW_MS,
)
from gatehouse.limiter.identity import KeyGenerator, KeySource, derive_key
from gatehouse.limiter.store import RateLimitRecord, RateLimitStore
from gatehouse.utils.clock import Clock, now_ms
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

LimitReachedCallback = Callable[[str, RateLimitRecord], None]
Sleeper = Callable[[int], Awaitable[None]]


async def _sleep_ms(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000)


# ─── Configuration ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GateConfig:
    """Thresholds for one mounted rate-limit gate.

    Raises ValueError on construction for non-positive durations or thresholds,
    so a bad preset fails at startup instead of on the first request.
    """

    name: str = "rate_limit"
    max_attempts_before_lockout: int = DEFAULT_MAX_ATTEMPTS_BEFORE_LOCKOUT
    window_ms: int = DEFAULT_WINDOW_MS
    lockout_duration_ms: int = DEFAULT_LOCKOUT_DURATION_MS
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    key_generator: Optional[KeyGenerator] = None
    on_limit_reached: Optional[LimitReachedCallback] = None

    def __post_init__(self) -> None:
        if self.max_attempts_before_lockout < 1:
            raise ValueError(
                f"{self.name}: max_attempts_before_lockout must be >= 1, "
                f"got {self.max_attempts_before_lockout}"
            )
        for field_name in ("window_ms", "lockout_duration_ms"):
            if getattr(self, field_name) <= 0:
                raise ValueError(f"{self.name}: {field_name} must be positive")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError(f"{self.name}: delays must be >= 0")


# ─── Results ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check_and_record() call."""

    allowed: bool
    key: str
    attempts: int
    delay_ms: int = 0
    """How long the caller was suspended before the attempt was recorded."""
    retry_after_ms: Optional[int] = None
    """Remaining lockout, set only when rejected."""
    lockout_until: Optional[int] = None
    locked_now: bool = False
    """True only for the call that opened the lockout window."""


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a key, as returned by get_status()."""

    attempts: int
    locked: bool
    lockout_until: Optional[int]
    next_delay_ms: Optional[int] = None
    """Delay the next check_and_record() for this key would impose (0 while locked)."""

    def as_dict(self) -> dict[str, Any]:
        """Wire form: {attempts, locked, lockoutUntil[, nextDelay]}."""
        body: dict[str, Any] = {
            "attempts": self.attempts,
            "locked": self.locked,
            "lockoutUntil": self.lockout_until,
        }
        if self.next_delay_ms is not None:
            body["nextDelay"] = self.next_delay_ms
        return body


# ─── Engine ──────────────────────────────────────────────────────────────────


class LimiterEngine:
    """Decides allow / delay / reject per key and owns the record store.

    Args:
        store: Record store (a fresh RateLimitStore by default).
        clock: Epoch-millisecond clock.
        sleep: Coroutine function suspending for N milliseconds.
               Tests inject a recorder to avoid real waits.
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.store = store if store is not None else RateLimitStore()
        self._clock: Clock = clock or now_ms
        self._sleep: Sleeper = sleep or _sleep_ms

    @staticmethod
    def progressive_delay(attempts: int, config: GateConfig) -> int:
        """Delay imposed before recording the attempt that follows `attempts`."""
        if attempts <= 1:
            return 0
        return min(config.max_delay_ms, config.base_delay_ms * 2 ** (attempts - 1))

    @staticmethod
    def _effective_attempts(record: RateLimitRecord, now: int, config: GateConfig) -> int:
        # An expired lockout or an idle window both restart the count
        if record.lockout_until is not None or now - record.last_attempt_at > config.window_ms:
            return 0
        return record.attempts

    async def check_and_record(self, key: str, config: GateConfig) -> CheckResult:
        now = self._clock()
        record = self.store.get(key)

        attempts = 0
        if record is not None:
            if record.is_locked(now):
                return self._locked_result(key, record, now)
            attempts = self._effective_attempts(record, now, config)

        delay_ms = self.progressive_delay(attempts, config)
        if delay_ms > 0:
            logger.debug("Progressive delay", key=key, gate=config.name, delay_ms=delay_ms)
            try:
                await self._sleep(delay_ms)
            except asyncio.CancelledError:
                logger.info("Gated request cancelled during delay", key=key, gate=config.name)
                raise

        now = self._clock()
        current = self.store.get(key)
        if current is not None and current.is_locked(now):
            # A concurrent request opened the lockout while this one slept
            return self._locked_result(key, current, now)

        attempts += 1
        updated = RateLimitRecord(attempts=attempts, last_attempt_at=now)

        if attempts > config.max_attempts_before_lockout:
            updated.lockout_until = now + config.lockout_duration_ms
            self.store.set(key, updated)
            logger.warning(
                "Rate limit lockout",
                key=key,
                gate=config.name,
                attempts=attempts,
                lockout_ms=config.lockout_duration_ms,
            )
            self._notify_limit_reached(key, updated, config)
            return CheckResult(
                allowed=False,
                key=key,
                attempts=attempts,
                delay_ms=delay_ms,
                retry_after_ms=config.lockout_duration_ms,
                lockout_until=updated.lockout_until,
                locked_now=True,
            )

        self.store.set(key, updated)
        return CheckResult(allowed=True, key=key, attempts=attempts, delay_ms=delay_ms)

    def _locked_result(self, key: str, record: RateLimitRecord, now: int) -> CheckResult:
        assert record.lockout_until is not None
        logger.info(
            "Rejected: key locked out",
            key=key,
            remaining_ms=record.lockout_until - now,
        )
        return CheckResult(
            allowed=False,
            key=key,
            attempts=record.attempts,
            retry_after_ms=record.lockout_until - now,
            lockout_until=record.lockout_until,
        )

    @staticmethod
    def _notify_limit_reached(key: str, record: RateLimitRecord, config: GateConfig) -> None:
        if config.on_limit_reached is None:
            return
        try:
            config.on_limit_reached(key, record)
        except Exception as exc:  # noqa: BLE001
            # The lockout is already recorded; a failing side effect must not undo it
            logger.error(
                "on_limit_reached callback failed",
                key=key,
                gate=config.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def mark_successful_attempt(self, source: KeySource) -> bool:
        """Forget everything about a key after the guarded operation succeeded.

        Accepts the key itself or the RequestIdentity it was derived from
        (default key = client address). Returns True if a record was removed.
        """
        key = derive_key(source)
        removed = self.store.delete(key)
        if removed:
            logger.debug("Rate limit record cleared", key=key)
        return removed

    def get_status(self, key: str, config: Optional[GateConfig] = None) -> RateLimitStatus:
        """Pure read of a key's state; never mutates the store."""
        record = self.store.get(key)
        if record is None:
            return RateLimitStatus(attempts=0, locked=False, lockout_until=None)

        config = config or GateConfig()
        now = self._clock()
        locked = record.is_locked(now)
        # A locked key is rejected without delay and restarts at 0 once the lockout ends
        upcoming = 0 if locked else self._effective_attempts(record, now, config)
        return RateLimitStatus(
            attempts=record.attempts,
            locked=locked,
            lockout_until=record.lockout_until,
            next_delay_ms=self.progressive_delay(upcoming, config),
        )

    def reset(self, key: str) -> bool:
        """Operator unlock: same effect as a successful attempt for `key`."""
        removed = self.store.delete(key)
        logger.info("Rate limit record reset", key=key, removed=removed)
        return removed
