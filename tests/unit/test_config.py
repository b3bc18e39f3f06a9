"""
tests/unit/test_config.py — Config Tests

Covers:
  - Defaults load cleanly
  - Intents accept a bitmask or a list of names (unknown names are not rejected)
  - Negative / zero limits are rejected at parse time
  - Invalid log level is rejected, valid ones are upper-cased
  - validate_all() raises ConfigError with a numbered list of every problem
  - CLAWCORD_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
  - The token is read from CLAWCORD_TOKEN
"""

from __future__ import annotations

import os
import textwrap
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    from config.settings import Settings
    return Settings(**overrides)


def _make_bot_cfg(**kwargs):
    from config.settings import BotConfig
    return BotConfig(**kwargs)


# ── BotConfig ─────────────────────────────────────────────────────────────────

class TestBotConfig:
    def test_defaults(self):
        cfg = _make_bot_cfg()
        assert cfg.intents == ["GUILDS", "GUILD_MESSAGES", "DIRECT_MESSAGES"]
        assert cfg.max_reconnect_count == 10
        assert cfg.heartbeat_interval is None
        assert cfg.reconnect_delay == 0.0
        assert cfg.ignore_self is True
        assert cfg.proxy_url is None

    def test_numeric_intents(self):
        assert _make_bot_cfg(intents=513).intents == 513

    def test_unknown_intent_names_not_rejected(self):
        cfg = _make_bot_cfg(intents=["GUILDS", "NOT_A_REAL_INTENT"])
        assert "NOT_A_REAL_INTENT" in cfg.intents

    def test_negative_intents_rejected(self):
        with pytest.raises(ValidationError):
            _make_bot_cfg(intents=-1)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            _make_bot_cfg(max_reconnect_count=-1)

    def test_zero_retries_allowed(self):
        assert _make_bot_cfg(max_reconnect_count=0).max_reconnect_count == 0

    def test_zero_heartbeat_rejected(self):
        with pytest.raises(ValidationError):
            _make_bot_cfg(heartbeat_interval=0)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValidationError):
            _make_bot_cfg(reconnect_delay=-0.5)

    def test_proxy_url(self):
        cfg = _make_bot_cfg(proxy={"host": "127.0.0.1", "port": 7890})
        assert cfg.proxy_url == "http://127.0.0.1:7890"

    def test_proxy_bad_port_rejected(self):
        with pytest.raises(ValidationError):
            _make_bot_cfg(proxy={"host": "127.0.0.1", "port": 70000})

    def test_rest_base_url_uses_sandbox_when_enabled(self):
        cfg = _make_bot_cfg(sandbox=True, sandbox_api_base_url="https://sandbox.example/api")
        assert cfg.rest_base_url == "https://sandbox.example/api"

    def test_rest_base_url_ignores_sandbox_url_when_disabled(self):
        cfg = _make_bot_cfg(sandbox=False, sandbox_api_base_url="https://sandbox.example/api")
        assert cfg.rest_base_url == cfg.api_base_url


# ── ServerConfig / LoggingConfig ──────────────────────────────────────────────

class TestServerConfig:
    def test_defaults(self):
        from config.settings import ServerConfig
        cfg = ServerConfig()
        assert cfg.host == "127.0.0.1"
        assert cfg.port == 3723
        assert cfg.access_token is None

    def test_bad_port_rejected(self):
        from config.settings import ServerConfig
        with pytest.raises(ValidationError):
            ServerConfig(port=0)


class TestLoggingConfig:
    def test_case_insensitive(self):
        from config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self):
        from config.settings import LoggingConfig
        with pytest.raises(ValidationError) as exc_info:
            LoggingConfig(level="VERBOSE")
        assert "VERBOSE" in str(exc_info.value)


# ── Settings ──────────────────────────────────────────────────────────────────

class TestSettings:
    def test_token_from_env(self):
        with patch.dict(os.environ, {"CLAWCORD_TOKEN": "env-token"}):
            settings = _make_settings()
        assert settings.token == "env-token"

    def test_blank_token_is_none(self):
        assert _make_settings(CLAWCORD_TOKEN="").token is None

    def test_sections_from_dicts(self):
        settings = _make_settings(
            bot={"intents": 1, "max_reconnect_count": 3},
            server={"enabled": False},
            logging={"level": "warning"},
        )
        assert settings.bot.max_reconnect_count == 3
        assert settings.server.enabled is False
        assert settings.log_level == "WARNING"


# ── validate_all ──────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_passes_with_token(self):
        _make_settings(CLAWCORD_TOKEN="abc").validate_all()

    def test_fails_missing_token(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().validate_all()
        assert "CLAWCORD_TOKEN" in str(exc_info.value)

    def test_fails_empty_intents(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings(CLAWCORD_TOKEN="abc", bot={"intents": []}).validate_all()
        assert "bot.intents" in str(exc_info.value)

    def test_fails_bad_gateway_scheme(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings(
                CLAWCORD_TOKEN="abc", bot={"gateway_url": "https://gateway.example"}
            ).validate_all()
        assert "gateway_url" in str(exc_info.value)

    def test_fails_sandbox_without_url(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings(CLAWCORD_TOKEN="abc", bot={"sandbox": True}).validate_all()
        assert "sandbox_api_base_url" in str(exc_info.value)

    def test_fails_public_server_without_access_token(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings(CLAWCORD_TOKEN="abc", server={"host": "0.0.0.0"}).validate_all()
        assert "access_token" in str(exc_info.value)

    def test_public_server_with_access_token_ok(self):
        _make_settings(
            CLAWCORD_TOKEN="abc",
            server={"host": "0.0.0.0", "access_token": "s3cret"},
        ).validate_all()

    def test_lists_every_problem_numbered(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings(bot={"intents": [], "api_base_url": "ftp://x"}).validate_all()
        msg = str(exc_info.value)
        assert "1." in msg and "2." in msg and "3." in msg
        assert "3 configuration problem(s)" in msg


# ── Loader ────────────────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_env_var_config_path(self, tmp_path):
        from config.settings import load_settings
        env_file = tmp_path / "env_config.yaml"
        env_file.write_text(textwrap.dedent("""
            bot:
              max_reconnect_count: 4
        """))
        with patch.dict(os.environ, {"CLAWCORD_CONFIG": str(env_file)}):
            settings = load_settings()
        assert settings.bot.max_reconnect_count == 4

    def test_explicit_path_beats_env_var(self, tmp_path):
        from config.settings import load_settings
        env_file = tmp_path / "env.yaml"
        env_file.write_text("bot:\n  max_reconnect_count: 4\n")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("bot:\n  max_reconnect_count: 7\n")
        with patch.dict(os.environ, {"CLAWCORD_CONFIG": str(env_file)}):
            settings = load_settings(explicit)
        assert settings.bot.max_reconnect_count == 7

    def test_missing_file_gives_defaults(self, tmp_path):
        from config.settings import load_settings
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.bot.max_reconnect_count == 10

    def test_unknown_sections_ignored(self, tmp_path):
        from config.settings import load_settings
        path = tmp_path / "c.yaml"
        path.write_text("llm:\n  provider: x\nserver:\n  port: 4000\n")
        settings = load_settings(path)
        assert settings.server.port == 4000

    def test_get_settings_returns_last_loaded(self, tmp_path, monkeypatch):
        import config.settings as settings_module
        monkeypatch.setattr(settings_module, "_singleton", None)
        path = tmp_path / "c.yaml"
        path.write_text("server:\n  port: 4100\n")
        loaded = settings_module.load_settings(path)
        assert settings_module.get_settings() is loaded
        assert settings_module.get_settings().server.port == 4100
