"""Health endpoint for Gatehouse.

  GET /health — 503 before the lifespan marks the app ready, 200 after.

Response body (200):
    {
      "status": "ok" | "degraded",
      "tracked_keys": 12,
      "janitor": "running" | "stopped",
      "audit": "healthy" | "error",
      "audit_backend": "LocalSQLiteBackend" | "NullAuditBackend",
      "signed_tokens": true | false
    }

"degraded" means the gates still work but the janitor is not sweeping or the
audit backend is failing its health check.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from gatehouse.gate.middleware import SecurityGate
from gatehouse.tokens.codec import HmacTokenCodec

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "Gatehouse is starting up...",
            },
        )

    gate: SecurityGate = request.app.state.gate
    audit_backend = request.app.state.audit_backend
    audit_ok = await audit_backend.health_check()
    janitor_running = gate.janitor.running

    return {
        "status": "ok" if audit_ok and janitor_running else "degraded",
        "tracked_keys": len(gate.engine.store),
        "janitor": "running" if janitor_running else "stopped",
        "audit": "healthy" if audit_ok else "error",
        "audit_backend": type(audit_backend).__name__,
        "signed_tokens": isinstance(gate.codec, HmacTokenCodec),
    }
