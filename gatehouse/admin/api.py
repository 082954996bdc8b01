"""Operator endpoints: rate-limit inspection / unlock and the security event log.

Unauthenticated; AdminLocalhostMiddleware restricts /admin/* to loopback.

Routes (prefixed with /admin in main.py):
    GET    /rate-limits/{key}   — {attempts, locked, lockoutUntil[, nextDelay]}
    DELETE /rate-limits/{key}   — clear a key (operator unlock)
    GET    /security-events     — recent SecurityEvents, newest first
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from gatehouse.audit.models import EVENT_KINDS
from gatehouse.audit.protocol import EventFilters
from gatehouse.gate.middleware import SecurityGate
from gatehouse.gate.presets import PRESETS

router = APIRouter(tags=["admin"])


# ─── Response Models ──────────────────────────────────────────────────────────


class ClearResult(BaseModel):
    """Response body for DELETE /admin/rate-limits/{key}."""

    key: str
    cleared: bool


class SecurityEventsPage(BaseModel):
    events: list[dict[str, Any]]
    total: int


def _gate(request: Request) -> SecurityGate:
    gate: Optional[SecurityGate] = getattr(request.app.state, "gate", None)
    if gate is None or not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "Gatehouse is starting up"},
        )
    return gate


# ─── Rate limits ──────────────────────────────────────────────────────────────


@router.get("/rate-limits/{key:path}")
async def get_rate_limit_status(
    request: Request,
    key: str,
    preset: Optional[str] = None,
) -> dict[str, Any]:
    """Status of one key. `preset` selects the delay curve used for nextDelay."""
    gate = _gate(request)
    if preset is not None and preset not in PRESETS:
        raise HTTPException(status_code=400, detail=f"Unknown preset: {preset}")
    return gate.get_status(key, preset).as_dict()


@router.delete("/rate-limits/{key:path}")
async def clear_rate_limit(request: Request, key: str) -> ClearResult:
    gate = _gate(request)
    return ClearResult(key=key, cleared=gate.engine.reset(key))


# ─── Security events ──────────────────────────────────────────────────────────


@router.get("/security-events")
async def get_security_events(
    request: Request,
    kind: Optional[str] = None,
    key: Optional[str] = None,
    gate: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 20,
) -> SecurityEventsPage:
    """Recent security events.

    Query params:
        kind:  one of ACCOUNT_LOCKED, MULTIPLE_FAILED_ATTEMPTS, SUSPICIOUS_ACTIVITY,
               CSRF_TOKEN_MISSING, CSRF_TOKEN_INVALID
        key:   rate-limit key
        gate:  producing gate (login, csrf, ...)
        since: ISO-8601 lower bound
        limit: 1–100, default 20
    """
    _gate(request)
    if kind is not None and kind not in EVENT_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown event kind: {kind}")

    backend = request.app.state.audit_backend
    filters = EventFilters(kind=kind, key=key, gate=gate, since=since, limit=max(1, min(limit, 100)))
    events = await backend.query_events(filters)
    return SecurityEventsPage(
        events=[event.as_dict() for event in events],
        total=await backend.count_events(filters),
    )
