"""Gatehouse rate limiter package.

Layout:
    store.py    — RateLimitRecord + RateLimitStore (in-memory, owned by the engine)
    identity.py — RequestIdentity + derive_key() + preset key generators
    engine.py   — GateConfig, LimiterEngine (progressive delay, lockout, status)
    janitor.py  — Janitor (periodic eviction of stale records)
"""

from gatehouse.limiter.engine import CheckResult, GateConfig, LimiterEngine, RateLimitStatus
from gatehouse.limiter.identity import RequestIdentity, derive_key
from gatehouse.limiter.janitor import Janitor
from gatehouse.limiter.store import RateLimitRecord, RateLimitStore

__all__ = [
    "CheckResult",
    "GateConfig",
    "Janitor",
    "LimiterEngine",
    "RateLimitRecord",
    "RateLimitStatus",
    "RateLimitStore",
    "RequestIdentity",
    "derive_key",
]
