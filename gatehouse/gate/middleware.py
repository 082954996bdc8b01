"""SecurityGate — CSRF and progressive-delay gates as FastAPI dependencies.

Each gate is a dependency attached to a route (or router). It either returns
without touching the request, or raises GateRejection, which the handler
registered by install_gate_handlers() turns into the 403 / 429 response
before the route handler runs.

    gate = SecurityGate(audit_backend=backend)
    app.add_api_route("/auth/login", login, methods=["POST"],
                      dependencies=[Depends(gate.csrf_gate()), Depends(gate.login_gate())])

    async def login(request: Request):
        ...
        if credentials_ok:
            gate.mark_successful_attempt(request.state.rate_limit.key)

A SecurityGate is constructed explicitly and owns its engine, codec and
janitor; nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping, Optional

from fastapi import Request

from gatehouse.audit.models import EventKind, SecurityEvent
from gatehouse.audit.protocol import AuditBackend, emit_security_event
from gatehouse.config import CsrfConfig, LimiterConfig, PresetOverride
from gatehouse.constants import (
    CODE_CSRF_TOKEN_INVALID,
    CODE_CSRF_TOKEN_MISSING,
    CSRF_BODY_FIELD,
    CSRF_HEADER_NAME,
    CSRF_RESPONSE_FIELD,
    DEFAULT_CSRF_EXEMPT_PATHS,
    DEFAULT_TOKEN_MAX_AGE_MS,
    SAFE_METHODS,
)
from gatehouse.gate.presets import PRESETS, build_preset
from gatehouse.gate.responses import build_csrf_rejection, build_lockout_rejection
from gatehouse.limiter.engine import GateConfig, LimiterEngine, RateLimitStatus
from gatehouse.limiter.identity import (
    UNKNOWN_ADDRESS,
    KeySource,
    RequestIdentity,
    current_identity,
    default_key,
)
from gatehouse.limiter.janitor import Janitor
from gatehouse.tokens.codec import TimestampTokenCodec, TokenCodec
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

GateDependency = Callable[[Request], Awaitable[None]]

_IDENTITY_STATE_ATTR = "gate_identity"


# ─── Configuration ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CsrfGateConfig:
    """CSRF gate settings.

    exempt_paths match as substrings of the request path, so
    "/auth/recovery-questions" also exempts "/api/auth/recovery-questions".
    """

    exempt_paths: tuple[str, ...] = DEFAULT_CSRF_EXEMPT_PATHS
    max_age_ms: int = DEFAULT_TOKEN_MAX_AGE_MS
    header_name: str = CSRF_HEADER_NAME
    body_field: str = CSRF_BODY_FIELD
    safe_methods: frozenset[str] = SAFE_METHODS
    audit_rejections: bool = True

    def __post_init__(self) -> None:
        if self.max_age_ms <= 0:
            raise ValueError(f"max_age_ms must be positive, got {self.max_age_ms}")
        if not self.header_name:
            raise ValueError("header_name must not be empty")
        if not self.body_field:
            raise ValueError("body_field must not be empty")
        # An empty exempt path would be a substring of every path
        if any(not path for path in self.exempt_paths):
            raise ValueError("exempt_paths must not contain empty strings")

    @classmethod
    def from_config(cls, csrf: CsrfConfig) -> "CsrfGateConfig":
        return cls(
            exempt_paths=tuple(csrf.exempt_paths),
            max_age_ms=csrf.max_age_ms,
            header_name=csrf.header_name,
            body_field=csrf.body_field,
            audit_rejections=csrf.audit_rejections,
        )

    def is_exempt(self, path: str) -> bool:
        return any(exempt in path for exempt in self.exempt_paths)


@dataclass(frozen=True)
class GateAttempt:
    """Attached to request.state.rate_limit when a rate-limit gate lets a request through."""

    key: str
    gate: str
    attempts: int
    remaining: int
    is_near_limit: bool
    delay_ms: int = 0


# ─── Request identity ────────────────────────────────────────────────────────


async def capture_identity(request: Request) -> RequestIdentity:
    """Build (once per request) the RequestIdentity the gates key on.

    The body is only read for JSON requests; an unparsable or non-object body
    is treated as empty and left for the route's own validation to reject.
    user_id always reflects request.state at call time, even on a cached
    identity.
    """
    raw_user_id = getattr(request.state, "user_id", None)
    user_id = str(raw_user_id) if raw_user_id is not None else None

    cached = getattr(request.state, _IDENTITY_STATE_ATTR, None)
    if isinstance(cached, RequestIdentity):
        if cached.user_id != user_id:
            cached = replace(cached, user_id=user_id)
            setattr(request.state, _IDENTITY_STATE_ATTR, cached)
        return cached

    body: Mapping[str, Any] = {}
    content_type = request.headers.get("content-type", "")
    if request.method not in SAFE_METHODS and "json" in content_type.lower():
        try:
            parsed = await request.json()
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            parsed = None
        if isinstance(parsed, dict):
            body = parsed

    identity = RequestIdentity(
        address=request.client.host if request.client else UNKNOWN_ADDRESS,
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("user-agent"),
        user_id=user_id,
        body=body,
    )
    setattr(request.state, _IDENTITY_STATE_ATTR, identity)
    return identity


# ─── SecurityGate ────────────────────────────────────────────────────────────


class SecurityGate:
    """Composes the token codec, limiter engine, janitor and audit sink.

    Args:
        engine:        LimiterEngine (fresh in-memory store by default).
        codec:         TokenCodec used by csrf_gate() and issue_token_handler().
        audit_backend: Receives lockout / CSRF events, fire-and-forget. None disables auditing.
        janitor:       Sweeper for the engine's store (created on the engine's store by default).
        csrf_config:   Default CsrfGateConfig for csrf_gate().
        presets:       Per-preset threshold overrides, keyed by preset name.
        limiter_config: Delay curve shared by the progressive presets.
    """

    def __init__(
        self,
        engine: Optional[LimiterEngine] = None,
        codec: Optional[TokenCodec] = None,
        audit_backend: Optional[AuditBackend] = None,
        janitor: Optional[Janitor] = None,
        csrf_config: Optional[CsrfGateConfig] = None,
        presets: Optional[Mapping[str, PresetOverride]] = None,
        limiter_config: Optional[LimiterConfig] = None,
    ) -> None:
        self.engine = engine or LimiterEngine()
        self.csrf_config = csrf_config or CsrfGateConfig()
        self.codec: TokenCodec = codec or TimestampTokenCodec(max_age_ms=self.csrf_config.max_age_ms)
        self.audit_backend = audit_backend
        limiter_config = limiter_config or LimiterConfig()
        self.janitor = janitor or Janitor(
            self.engine.store,
            retention_ms=limiter_config.retention_ms,
            interval_s=limiter_config.janitor_interval_s,
        )
        overrides = dict(presets or {})
        self._presets: dict[str, GateConfig] = {
            name: build_preset(
                name,
                self._emit,
                overrides.get(name),
                base_delay_ms=limiter_config.base_delay_ms,
                max_delay_ms=limiter_config.max_delay_ms,
            )
            for name in PRESETS
        }

    # ── Audit ─────────────────────────────────────────────────────────────────

    def _emit(self, event: SecurityEvent) -> None:
        emit_security_event(self.audit_backend, event)

    def _emit_for(
        self,
        identity: RequestIdentity,
        key: str,
        kind: EventKind,
        gate: str,
        **details: Any,
    ) -> None:
        self._emit(
            SecurityEvent(
                key=key,
                kind=kind,
                gate=gate,
                ip_address=identity.address,
                user_agent=identity.user_agent,
                details=details,
            )
        )

    # ── CSRF ──────────────────────────────────────────────────────────────────

    async def check_csrf(self, request: Request, config: Optional[CsrfGateConfig] = None) -> None:
        """Raise GateRejection unless the request carries a fresh CSRF token."""
        config = config or self.csrf_config
        if request.method in config.safe_methods:
            return
        if config.is_exempt(request.url.path):
            return

        token = request.headers.get(config.header_name)
        identity: Optional[RequestIdentity] = None
        if not token:
            identity = await capture_identity(request)
            token = identity.body.get(config.body_field)

        if not token:
            code = CODE_CSRF_TOKEN_MISSING
        elif not isinstance(token, str) or not self.codec.validate(token, config.max_age_ms):
            code = CODE_CSRF_TOKEN_INVALID
        else:
            return

        identity = identity or await capture_identity(request)
        logger.info("CSRF rejection", code=code, path=identity.path, address=identity.address)
        if config.audit_rejections:
            self._emit_for(
                identity,
                default_key(identity),
                code,  # type: ignore[arg-type]
                "csrf",
                method=identity.method,
                path=identity.path,
            )
        raise build_csrf_rejection(code)

    def csrf_gate(self, config: Optional[CsrfGateConfig] = None) -> GateDependency:
        """FastAPI dependency enforcing the CSRF token check."""

        async def csrf_dependency(request: Request) -> None:
            await self.check_csrf(request, config)

        return csrf_dependency

    def issue_token_handler(self) -> Callable[[Request], Awaitable[dict[str, str]]]:
        """Route handler returning {"csrfToken": <fresh token>}."""

        async def issue_csrf_token(request: Request) -> dict[str, str]:
            return {CSRF_RESPONSE_FIELD: self.codec.issue()}

        return issue_csrf_token

    # ── Rate limiting ─────────────────────────────────────────────────────────

    async def check_rate_limit(self, request: Request, config: GateConfig) -> GateAttempt:
        """Run one attempt through the engine; raise GateRejection on lockout."""
        identity = await capture_identity(request)
        key = config.key_generator(identity) if config.key_generator else default_key(identity)

        context_token = current_identity.set(identity)
        try:
            result = await self.engine.check_and_record(key, config)
        finally:
            current_identity.reset(context_token)

        if result.locked_now:
            self._emit_for(
                identity,
                key,
                "ACCOUNT_LOCKED",
                config.name,
                attempts=result.attempts,
                lockout_ms=result.retry_after_ms,
            )

        if not result.allowed:
            assert result.retry_after_ms is not None
            raise build_lockout_rejection(result.retry_after_ms)

        limit = config.max_attempts_before_lockout
        attempt = GateAttempt(
            key=key,
            gate=config.name,
            attempts=result.attempts,
            remaining=max(0, limit - result.attempts),
            is_near_limit=result.attempts >= limit - 2,
            delay_ms=result.delay_ms,
        )
        request.state.rate_limit = attempt
        return attempt

    def rate_limit_gate(self, config: GateConfig) -> GateDependency:
        """FastAPI dependency applying `config` to every request of the route."""

        async def rate_limit_dependency(request: Request) -> None:
            await self.check_rate_limit(request, config)

        return rate_limit_dependency

    @property
    def preset_names(self) -> list[str]:
        return sorted(self._presets)

    def preset(self, name: str) -> GateConfig:
        return self._presets[name]

    def login_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["login"])

    def security_question_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["security_question"])

    def password_reset_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["password_reset"])

    def data_access_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["data_access"])

    def data_modification_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["data_modification"])

    def file_upload_gate(self) -> GateDependency:
        return self.rate_limit_gate(self._presets["file_upload"])

    def mark_successful_attempt(self, source: KeySource) -> bool:
        return self.engine.mark_successful_attempt(source)

    def get_status(self, key: str, preset: Optional[str] = None) -> RateLimitStatus:
        config = self._presets[preset] if preset is not None else None
        return self.engine.get_status(key, config)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the janitor. Must be called from a running event loop."""
        self.janitor.start()

    async def shutdown(self) -> None:
        """Stop the janitor. Idempotent."""
        await self.janitor.destroy()
