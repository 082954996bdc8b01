"""Config loading for Gatehouse.

Reads `.gatehouse/config.yaml` (or `~/.gatehouse/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. GATEHOUSE_CONFIG environment variable (if set)
  3. `.gatehouse/config.yaml` (working directory — for development)
  4. `~/.gatehouse/config.yaml` (home directory — for deployments)

Environment variable overrides:
  GATEHOUSE_PORT        — overrides server.port
  GATEHOUSE_CSRF_SECRET — overrides csrf.hmac_secret (switches to HMAC-signed tokens)
  GATEHOUSE_CONFIG      — sets an explicit config file path to try first

Example:

    version: 1
    server:
      host: 127.0.0.1
      port: 8400
    csrf:
      max_age_ms: 3600000
      exempt_paths: [/auth/recovery-questions]
    limiter:
      base_delay_ms: 1000
      max_delay_ms: 60000
    presets:
      login:
        max_attempts: 5
        window_ms: 900000
    audit:
      backend: sqlite
      path: ~/.gatehouse/audit.db
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from gatehouse.constants import (
    CSRF_BODY_FIELD,
    CSRF_HEADER_NAME,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_CSRF_EXEMPT_PATHS,
    DEFAULT_JANITOR_INTERVAL_S,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_RETENTION_MS,
    DEFAULT_TOKEN_MAX_AGE_MS,
)
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_AUDIT_BACKENDS: frozenset[str] = frozenset({"sqlite", "none"})

PRESET_NAMES: frozenset[str] = frozenset(
    {
        "login",
        "security_question",
        "password_reset",
        "data_access",
        "data_modification",
        "file_upload",
    }
)

DEFAULT_CONFIG_PATHS = [
    ".gatehouse/config.yaml",
    os.path.expanduser("~/.gatehouse/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """Reference application binding."""

    host: str = "127.0.0.1"
    port: int = 8400


@dataclass
class CsrfConfig:
    """CSRF gate settings.

    hmac_secret: when set, tokens are signed (HmacTokenCodec); otherwise
                 the timestamp-only codec is used.
    """

    max_age_ms: int = DEFAULT_TOKEN_MAX_AGE_MS
    exempt_paths: list[str] = field(default_factory=lambda: list(DEFAULT_CSRF_EXEMPT_PATHS))
    header_name: str = CSRF_HEADER_NAME
    body_field: str = CSRF_BODY_FIELD
    audit_rejections: bool = True
    hmac_secret: Optional[str] = None


@dataclass
class LimiterConfig:
    """Engine-wide delay curve and janitor schedule."""

    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    retention_ms: int = DEFAULT_RETENTION_MS
    janitor_interval_s: float = DEFAULT_JANITOR_INTERVAL_S


@dataclass
class PresetOverride:
    """Per-preset threshold overrides. None keeps the preset's built-in value."""

    max_attempts: Optional[int] = None
    window_ms: Optional[int] = None
    lockout_duration_ms: Optional[int] = None


@dataclass
class AuditConfig:
    """Audit backend configuration."""

    backend: str = "sqlite"  # "sqlite" | "none"
    retention_days: int = 90
    path: str = "~/.gatehouse/audit.db"


@dataclass
class Config:
    """Root configuration object populated from .gatehouse/config.yaml.

    All fields have safe defaults — Gatehouse can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    csrf: CsrfConfig = field(default_factory=CsrfConfig)
    limiter: LimiterConfig = field(default_factory=LimiterConfig)
    presets: dict[str, PresetOverride] = field(default_factory=dict)
    audit: AuditConfig = field(default_factory=AuditConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently
        ignored, except unknown preset names which are rejected.

        Raises:
            SystemExit(1): On any invalid value.
        """
        where = path or "<config>"

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server", where)
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=_int(server_raw, "port", 8400, where, "server", minimum=1),
        )

        # ── CSRF ──────────────────────────────────────────────────────────────
        csrf_raw = _section(raw, "csrf", where)
        exempt_paths = csrf_raw.get("exempt_paths", list(DEFAULT_CSRF_EXEMPT_PATHS))
        if not isinstance(exempt_paths, list) or not all(isinstance(p, str) for p in exempt_paths):
            _fail(f"{where}: csrf.exempt_paths must be a list of strings.")
        hmac_secret = csrf_raw.get("hmac_secret")
        if hmac_secret is not None and (not isinstance(hmac_secret, str) or not hmac_secret):
            _fail(f"{where}: csrf.hmac_secret must be a non-empty string, got {type(hmac_secret).__name__}.")
        csrf = CsrfConfig(
            max_age_ms=_int(csrf_raw, "max_age_ms", DEFAULT_TOKEN_MAX_AGE_MS, where, "csrf", minimum=1),
            exempt_paths=exempt_paths,
            header_name=str(csrf_raw.get("header_name", CSRF_HEADER_NAME)).lower(),
            body_field=str(csrf_raw.get("body_field", CSRF_BODY_FIELD)),
            audit_rejections=bool(csrf_raw.get("audit_rejections", True)),
            hmac_secret=hmac_secret,
        )

        # ── Limiter ───────────────────────────────────────────────────────────
        limiter_raw = _section(raw, "limiter", where)
        interval = limiter_raw.get("janitor_interval_s", DEFAULT_JANITOR_INTERVAL_S)
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            _fail(f"{where}: limiter.janitor_interval_s must be a positive number, got {interval!r}.")
        limiter = LimiterConfig(
            base_delay_ms=_int(limiter_raw, "base_delay_ms", DEFAULT_BASE_DELAY_MS, where, "limiter", minimum=0),
            max_delay_ms=_int(limiter_raw, "max_delay_ms", DEFAULT_MAX_DELAY_MS, where, "limiter", minimum=0),
            retention_ms=_int(limiter_raw, "retention_ms", DEFAULT_RETENTION_MS, where, "limiter", minimum=1),
            janitor_interval_s=float(interval),
        )

        # ── Presets ───────────────────────────────────────────────────────────
        presets: dict[str, PresetOverride] = {}
        for name, preset_raw in _section(raw, "presets", where).items():
            if name not in PRESET_NAMES:
                _fail(
                    f"{where}: unknown preset '{name}'. "
                    f"Supported presets: {sorted(PRESET_NAMES)}."
                )
            if not isinstance(preset_raw, dict):
                _fail(f"{where}: presets.{name} must be a mapping.")
            section = f"presets.{name}"
            presets[name] = PresetOverride(
                max_attempts=_int(preset_raw, "max_attempts", None, where, section, minimum=1),
                window_ms=_int(preset_raw, "window_ms", None, where, section, minimum=1),
                lockout_duration_ms=_int(preset_raw, "lockout_duration_ms", None, where, section, minimum=1),
            )

        # ── Audit ─────────────────────────────────────────────────────────────
        audit_raw = _section(raw, "audit", where)
        backend = audit_raw.get("backend", "sqlite")
        if backend not in VALID_AUDIT_BACKENDS:
            _fail(
                f"{where}: invalid audit.backend: '{backend}'. "
                f"Supported values: {sorted(VALID_AUDIT_BACKENDS)}."
            )
        audit = AuditConfig(
            backend=backend,
            retention_days=_int(audit_raw, "retention_days", 90, where, "audit", minimum=1),
            path=audit_raw.get("path", "~/.gatehouse/audit.db"),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            csrf=csrf,
            limiter=limiter,
            presets=presets,
            audit=audit,
            path=path,
        )


# ─── Validation helpers ──────────────────────────────────────────────────────


def _fail(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str, where: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        _fail(f"{where}: '{name}' must be a mapping.")
    return value


def _int(
    raw: dict,
    name: str,
    default: Any,
    where: str,
    section: str,
    minimum: int,
) -> Any:
    if name not in raw:
        return default
    value = raw[name]
    # bool is an int subclass; 'true' is never a valid duration
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        _fail(f"{where}: {section}.{name} must be an integer >= {minimum}, got {value!r}.")
    return value


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate Gatehouse configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises SystemExit(1).
    Env var overrides are applied in both cases.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("GATEHOUSE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"Failed to parse {found_path}: {exc}\n"
            "Gatehouse refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: Gatehouse is configured to bind on 0.0.0.0 (all interfaces). "
            "The /admin routes rely on loopback-only access; keep "
            "GATEHOUSE_ADMIN_LOCALHOST_ONLY enabled."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        audit_backend=config.audit.backend,
        signed_tokens=config.csrf.hmac_secret is not None,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If GATEHOUSE_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("GATEHOUSE_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(f"GATEHOUSE_PORT environment variable is not a valid integer: '{env_port}'")

    env_secret = os.environ.get("GATEHOUSE_CSRF_SECRET")
    if env_secret:
        config.csrf.hmac_secret = env_secret
