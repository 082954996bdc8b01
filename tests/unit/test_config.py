"""Unit tests for gatehouse.config — YAML loading, validation, env overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gatehouse.config import Config, PresetOverride, load_config
from gatehouse.constants import DEFAULT_CSRF_EXEMPT_PATHS, HOUR_MS


@pytest.fixture(autouse=True)
def no_default_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep a developer's real ~/.gatehouse/config.yaml out of these tests."""
    monkeypatch.setattr("gatehouse.config.DEFAULT_CONFIG_PATHS", [str(tmp_path / "absent.yaml")])


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


# ─── Defaults ─────────────────────────────────────────────────────────────────


class TestDefaults:

    def test_no_file_returns_defaults(self) -> None:
        config = load_config()
        assert config.path is None
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 8400
        assert config.csrf.max_age_ms == HOUR_MS
        assert config.csrf.exempt_paths == list(DEFAULT_CSRF_EXEMPT_PATHS)
        assert config.csrf.hmac_secret is None
        assert config.limiter.base_delay_ms == 1000
        assert config.limiter.max_delay_ms == 60_000
        assert config.presets == {}
        assert config.audit.backend == "sqlite"

    def test_minimal_file(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, "version: 1\n"))
        assert config.version == 1
        assert config.path is not None and config.path.endswith("config.yaml")
        assert config.audit.retention_days == 90


# ─── Full file ────────────────────────────────────────────────────────────────


class TestFullFile:

    def test_all_sections(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
version: 1
server:
  host: 127.0.0.1
  port: 9000
csrf:
  max_age_ms: 600000
  exempt_paths: [/public]
  header_name: X-My-Token
  body_field: token
  audit_rejections: false
  hmac_secret: s3cret
limiter:
  base_delay_ms: 500
  max_delay_ms: 8000
  retention_ms: 3600000
  janitor_interval_s: 60
presets:
  login:
    max_attempts: 10
  password_reset:
    lockout_duration_ms: 7200000
audit:
  backend: none
  retention_days: 30
  path: /tmp/events.db
""",
        )
        config = load_config(path)

        assert config.server.port == 9000
        assert config.csrf.max_age_ms == 600_000
        assert config.csrf.exempt_paths == ["/public"]
        assert config.csrf.header_name == "x-my-token"
        assert config.csrf.body_field == "token"
        assert config.csrf.audit_rejections is False
        assert config.csrf.hmac_secret == "s3cret"
        assert config.limiter.base_delay_ms == 500
        assert config.limiter.janitor_interval_s == 60.0
        assert config.presets == {
            "login": PresetOverride(max_attempts=10),
            "password_reset": PresetOverride(lockout_duration_ms=7_200_000),
        }
        assert config.audit.backend == "none"
        assert config.audit.retention_days == 30

    def test_env_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATEHOUSE_CONFIG", _write(tmp_path, "version: 1\nserver:\n  port: 9100\n"))
        assert load_config().server.port == 9100

    def test_from_dict_without_file(self) -> None:
        config = Config.from_dict({"version": 1, "limiter": {"base_delay_ms": 0}})
        assert config.limiter.base_delay_ms == 0


# ─── Errors ───────────────────────────────────────────────────────────────────


class TestErrors:

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "server:\n  port: 8400\n",
            "version: 2\n",
            "- just\n- a list\n",
            "version: 1\nserver: [1, 2]\n",
            "version: 1\nserver:\n  port: 0\n",
            "version: 1\ncsrf:\n  max_age_ms: true\n",
            "version: 1\ncsrf:\n  max_age_ms: '3600000'\n",
            "version: 1\ncsrf:\n  exempt_paths: /one\n",
            "version: 1\ncsrf:\n  hmac_secret: 12345\n",
            "version: 1\ncsrf:\n  hmac_secret: ''\n",
            "version: 1\nlimiter:\n  base_delay_ms: -1\n",
            "version: 1\nlimiter:\n  janitor_interval_s: 0\n",
            "version: 1\npresets:\n  checkout:\n    max_attempts: 3\n",
            "version: 1\npresets:\n  login: 5\n",
            "version: 1\npresets:\n  login:\n    max_attempts: 0\n",
            "version: 1\naudit:\n  backend: supabase\n",
            "version: [1\n",
        ],
    )
    def test_invalid_file_exits(self, tmp_path: Path, text: str, capsys: Any) -> None:
        with pytest.raises(SystemExit) as exc_info:
            load_config(_write(tmp_path, text))
        assert exc_info.value.code == 1
        assert "CONFIG ERROR:" in capsys.readouterr().err

    def test_error_names_the_field(self, tmp_path: Path, capsys: Any) -> None:
        with pytest.raises(SystemExit):
            load_config(_write(tmp_path, "version: 1\npresets:\n  login:\n    window_ms: -5\n"))
        assert "presets.login.window_ms" in capsys.readouterr().err

    def test_numeric_hmac_secret_fails_at_load(self, capsys: Any) -> None:
        with pytest.raises(SystemExit):
            Config.from_dict({"version": 1, "csrf": {"hmac_secret": 12345}})
        assert "csrf.hmac_secret" in capsys.readouterr().err


# ─── Env overrides ────────────────────────────────────────────────────────────


class TestEnvOverrides:

    def test_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATEHOUSE_PORT", "9999")
        assert load_config().server.port == 9999

    def test_invalid_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATEHOUSE_PORT", "eighty")
        with pytest.raises(SystemExit):
            load_config()

    def test_csrf_secret(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATEHOUSE_CSRF_SECRET", "from-env")
        path = _write(tmp_path, "version: 1\ncsrf:\n  hmac_secret: from-file\n")
        assert load_config(path).csrf.hmac_secret == "from-env"
