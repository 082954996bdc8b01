"""Endpoint presets: ready-made GateConfigs for common guarded routes.

| Preset              | Limit         | Lockout | Key                          | Delay curve |
|---------------------|---------------|---------|------------------------------|-------------|
| login               | 5 / 15 min    | 15 min  | address                      | progressive |
| security_question   | 3 / 15 min    | 15 min  | "<address>-<email>"          | progressive |
| password_reset      | 3 / 1 h       | 1 h     | "<address>-<email>"          | progressive |
| data_access         | 60 / 1 min    | 1 min   | "data_access:<user|address>" | none        |
| data_modification   | 30 / 1 min    | 1 min   | "data_mod:<user|address>"    | none        |
| file_upload         | 10 / 5 min    | 5 min   | "file_upload:<user|address>" | none        |

The credential presets report their lockouts to the audit sink through
on_limit_reached; the data-plane presets only log a warning. The gate itself
records ACCOUNT_LOCKED for every lockout regardless of preset.

Thresholds can be overridden per preset from config (presets.<name>).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from gatehouse.audit.models import EventKind, SecurityEvent
from gatehouse.config import PresetOverride
from gatehouse.constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    HOUR_MS,
    MINUTE_MS,
)
from gatehouse.limiter.engine import GateConfig, LimitReachedCallback
from gatehouse.limiter.identity import (
    KeyGenerator,
    address_and_email_key,
    current_identity,
    prefixed_user_key,
)
from gatehouse.limiter.store import RateLimitRecord
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

EventSink = Callable[[SecurityEvent], None]


@dataclass(frozen=True)
class PresetDefinition:
    """Built-in thresholds for one preset before config overrides."""

    max_attempts: int
    window_ms: int
    lockout_duration_ms: int
    key_generator: Optional[KeyGenerator] = None
    progressive: bool = True


PRESETS: dict[str, PresetDefinition] = {
    "login": PresetDefinition(5, 15 * MINUTE_MS, 15 * MINUTE_MS),
    "security_question": PresetDefinition(
        3, 15 * MINUTE_MS, 15 * MINUTE_MS, key_generator=address_and_email_key
    ),
    "password_reset": PresetDefinition(3, HOUR_MS, HOUR_MS, key_generator=address_and_email_key),
    "data_access": PresetDefinition(
        60, MINUTE_MS, MINUTE_MS, key_generator=prefixed_user_key("data_access"), progressive=False
    ),
    "data_modification": PresetDefinition(
        30, MINUTE_MS, MINUTE_MS, key_generator=prefixed_user_key("data_mod"), progressive=False
    ),
    "file_upload": PresetDefinition(
        10, 5 * MINUTE_MS, 5 * MINUTE_MS, key_generator=prefixed_user_key("file_upload"), progressive=False
    ),
}


# ─── on_limit_reached callbacks ──────────────────────────────────────────────


def _lockout_ms(record: RateLimitRecord) -> int:
    if record.lockout_until is None:
        return 0
    return record.lockout_until - record.last_attempt_at


def _event(key: str, kind: EventKind, gate: str, **details: object) -> SecurityEvent:
    identity = current_identity.get()
    return SecurityEvent(
        key=key,
        kind=kind,
        gate=gate,
        ip_address=identity.address if identity else None,
        user_agent=identity.user_agent if identity else None,
        details=dict(details),
    )


def _login_callback(emit: EventSink) -> LimitReachedCallback:
    def on_limit_reached(key: str, record: RateLimitRecord) -> None:
        emit(_event(key, "MULTIPLE_FAILED_ATTEMPTS", "login", operation="login", attempts=record.attempts))
        emit(
            _event(
                key,
                "SUSPICIOUS_ACTIVITY",
                "login",
                activity="excessive_login_attempts",
                attempts=record.attempts,
                lockout_ms=_lockout_ms(record),
            )
        )

    return on_limit_reached


def _security_question_callback(emit: EventSink) -> LimitReachedCallback:
    def on_limit_reached(key: str, record: RateLimitRecord) -> None:
        emit(
            _event(
                key,
                "MULTIPLE_FAILED_ATTEMPTS",
                "security_question",
                operation="security_question_verification",
                attempts=record.attempts,
            )
        )

    return on_limit_reached


def _password_reset_callback(emit: EventSink) -> LimitReachedCallback:
    def on_limit_reached(key: str, record: RateLimitRecord) -> None:
        identity = current_identity.get()
        emit(
            _event(
                key,
                "SUSPICIOUS_ACTIVITY",
                "password_reset",
                activity="excessive_password_reset_requests",
                attempts=record.attempts,
                email=identity.body_field("email") if identity else None,
            )
        )

    return on_limit_reached


def _warning_callback(name: str) -> LimitReachedCallback:
    def on_limit_reached(key: str, record: RateLimitRecord) -> None:
        identity = current_identity.get()
        logger.warning(
            "Excessive requests",
            gate=name,
            key=key,
            user_id=identity.user_id if identity else None,
            address=identity.address if identity else None,
            attempts=record.attempts,
        )

    return on_limit_reached


_CALLBACKS: dict[str, Callable[[EventSink], LimitReachedCallback]] = {
    "login": _login_callback,
    "security_question": _security_question_callback,
    "password_reset": _password_reset_callback,
}


# ─── Builder ─────────────────────────────────────────────────────────────────


def build_preset(
    name: str,
    emit: EventSink,
    override: Optional[PresetOverride] = None,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> GateConfig:
    """Return the GateConfig for a named preset.

    Raises:
        KeyError:   Unknown preset name.
        ValueError: An override produced an invalid GateConfig.
    """
    definition = PRESETS[name]
    override = override or PresetOverride()

    if name in _CALLBACKS:
        callback = _CALLBACKS[name](emit)
    else:
        callback = _warning_callback(name)

    return GateConfig(
        name=name,
        max_attempts_before_lockout=override.max_attempts or definition.max_attempts,
        window_ms=override.window_ms or definition.window_ms,
        lockout_duration_ms=override.lockout_duration_ms or definition.lockout_duration_ms,
        base_delay_ms=base_delay_ms if definition.progressive else 0,
        max_delay_ms=max_delay_ms,
        key_generator=definition.key_generator,
        on_limit_reached=callback,
    )
