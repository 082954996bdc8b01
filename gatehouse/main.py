"""Gatehouse FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - GET /auth/csrf-token — token issuance (slowapi-limited per address)
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()           → app.state.config
  2. create_audit_backend()  → app.state.audit_backend
  3. build_security_gate()   → app.state.gate (codec, engine, janitor, presets)
  4. gate.start()            → janitor sweep task
  5. retention pruner        → daily prune of the SQLite event log
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → cancel pruner → gate.shutdown() (janitor) →
  drain pending audit writes → close audit backend
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from gatehouse.admin.api import router as admin_router
from gatehouse.admin.middleware import AdminLocalhostMiddleware
from gatehouse.audit.factory import create_audit_backend
from gatehouse.audit.protocol import AuditBackend, drain_pending_events
from gatehouse.audit.sqlite_backend import LocalSQLiteBackend, run_retention_pruner
from gatehouse.config import Config, load_config
from gatehouse.constants import REQUEST_ID_HEADER
from gatehouse.gate.limiter import TOKEN_ISSUANCE_RATE_LIMIT, limiter
from gatehouse.gate.middleware import CsrfGateConfig, SecurityGate
from gatehouse.gate.responses import install_gate_handlers
from gatehouse.health import router as health_router
from gatehouse.limiter.engine import LimiterEngine
from gatehouse.tokens.codec import HmacTokenCodec, TimestampTokenCodec, TokenCodec
from gatehouse.utils.logger import bind_request_id, clear_request_id, configure_logging, get_logger
from gatehouse.utils.ulid import generate_ulid

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

auth_router = APIRouter(tags=["auth"])


@auth_router.get("/auth/csrf-token")
@limiter.limit(TOKEN_ISSUANCE_RATE_LIMIT)
async def get_csrf_token(request: Request) -> dict[str, str]:
    """Issue a fresh CSRF token: {"csrfToken": "<token>"}."""
    gate: Optional[SecurityGate] = getattr(request.app.state, "gate", None)
    if gate is None or not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "Gatehouse is starting up..."},
        )
    return await gate.issue_token_handler()(request)


# ─── Request ID ───────────────────────────────────────────────────────────────


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a ULID request id to the log context and echo it as a response header."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = generate_ulid()
        bind_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# ─── Gate construction ────────────────────────────────────────────────────────


def build_codec(config: Config) -> TokenCodec:
    """HMAC-signed tokens when a secret is configured, timestamp-only otherwise."""
    if config.csrf.hmac_secret:
        return HmacTokenCodec(config.csrf.hmac_secret, max_age_ms=config.csrf.max_age_ms)
    logger.warning(
        "CSRF tokens are unsigned; set GATEHOUSE_CSRF_SECRET to bind them to this server"
    )
    return TimestampTokenCodec(max_age_ms=config.csrf.max_age_ms)


def build_security_gate(config: Config, audit_backend: AuditBackend) -> SecurityGate:
    """Assemble the SecurityGate from config.

    Raises:
        ValueError: On values that pass file parsing but not gate validation.
    """
    return SecurityGate(
        engine=LimiterEngine(),
        codec=build_codec(config),
        audit_backend=audit_backend,
        csrf_config=CsrfGateConfig.from_config(config.csrf),
        presets=config.presets,
        limiter_config=config.limiter,
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("Gatehouse starting up...")

    # load_config() raises SystemExit before ready=True is ever set
    config: Config = load_config()
    app.state.config = config

    # RuntimeError on an incompatible audit schema refuses startup
    audit_backend: AuditBackend = await create_audit_backend(config)
    app.state.audit_backend = audit_backend

    gate = build_security_gate(config, audit_backend)
    app.state.gate = gate
    gate.start()

    retention_task: Optional[asyncio.Task[None]] = None
    if isinstance(audit_backend, LocalSQLiteBackend):
        retention_task = asyncio.create_task(
            run_retention_pruner(audit_backend, retention_days=config.audit.retention_days)
        )
        logger.info("Retention pruner started", retention_days=config.audit.retention_days)

    app.state.ready = True
    logger.info(
        "Gatehouse ready",
        presets=gate.preset_names,
        signed_tokens=isinstance(gate.codec, HmacTokenCodec),
    )

    yield

    logger.info("Gatehouse shutting down...")
    app.state.ready = False

    if retention_task is not None and not retention_task.done():
        retention_task.cancel()
        try:
            await retention_task
        except asyncio.CancelledError:
            pass

    await gate.shutdown()
    await drain_pending_events()
    await audit_backend.close()

    logger.info("Gatehouse shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the Gatehouse FastAPI application.

    Call this directly in tests to get an isolated app instance:
        app = create_app()
    """
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="Gatehouse",
        description="CSRF and progressive-delay request gates for authentication endpoints",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # /health answers 503 until the lifespan flips this
    application.state.ready = False

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    install_gate_handlers(application)

    # The LAST-added middleware is OUTERMOST (runs first)
    application.add_middleware(SlowAPIMiddleware)
    application.add_middleware(AdminLocalhostMiddleware)
    application.add_middleware(RequestIdMiddleware)

    application.include_router(health_router)
    application.include_router(auth_router)
    application.include_router(admin_router, prefix="/admin")

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn gatehouse.main:app --host 127.0.0.1 --port 8400 --workers 1

app = create_app()
