"""
config/settings.py — ClawCord Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - BotConfig accepts intents as a raw bitmask or a list of symbolic names;
    unknown names are resolved later with a warning, never rejected here
  - ProxyConfig renders the http:// proxy URL shared by REST and gateway
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects CLAWCORD_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
DEFAULT_API_BASE_URL = "https://discord.com/api"


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class ProxyConfig(BaseModel):
    host: str
    port: int

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 < v < 65536):
            raise ValueError("bot.proxy.port must be between 1 and 65535")
        return v

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class BotConfig(BaseModel):
    intents: Union[int, list[str]] = Field(
        default_factory=lambda: ["GUILDS", "GUILD_MESSAGES", "DIRECT_MESSAGES"]
    )
    max_reconnect_count: int = 10
    heartbeat_interval: Optional[int] = None   # ms; overrides HELLO when set
    reconnect_delay: float = 0.0               # s; 0 = reconnect immediately
    ignore_self: bool = True
    sandbox: bool = False
    request_timeout: float = 15.0
    gateway_url: str = DEFAULT_GATEWAY_URL
    api_base_url: str = DEFAULT_API_BASE_URL
    sandbox_api_base_url: Optional[str] = None   # used instead of api_base_url when sandbox is on
    proxy: Optional[ProxyConfig] = None

    @field_validator("intents")
    @classmethod
    def _non_negative_intents(cls, v: Union[int, list[str]]) -> Union[int, list[str]]:
        if isinstance(v, int) and v < 0:
            raise ValueError("bot.intents bitmask must be >= 0")
        return v

    @field_validator("max_reconnect_count")
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("bot.max_reconnect_count must be >= 0")
        return v

    @field_validator("heartbeat_interval")
    @classmethod
    def _positive_heartbeat(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("bot.heartbeat_interval must be >= 1 (milliseconds)")
        return v

    @field_validator("reconnect_delay", "request_timeout")
    @classmethod
    def _non_negative_seconds(cls, v: float) -> float:
        if v < 0:
            raise ValueError("bot delays and timeouts must be >= 0 seconds")
        return v

    @property
    def proxy_url(self) -> Optional[str]:
        return self.proxy.url if self.proxy else None

    @property
    def rest_base_url(self) -> str:
        if self.sandbox and self.sandbox_api_base_url:
            return self.sandbox_api_base_url
        return self.api_base_url


class ServerConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 3723
    access_token: Optional[str] = None

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 < v < 65536):
            raise ValueError("server.port must be between 1 and 65535")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    ClawCord runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    token: Optional[str] = Field(default=None, alias="CLAWCORD_TOKEN")

    # -- Structured config (from config.yaml) --------------------------------
    bot: BotConfig = Field(default_factory=BotConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v).strip()

    @field_validator("bot", mode="before")
    @classmethod
    def _coerce_bot(cls, v: Any) -> Any:
        return BotConfig(**v) if isinstance(v, dict) else v

    @field_validator("server", mode="before")
    @classmethod
    def _coerce_server(cls, v: Any) -> Any:
        return ServerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field and runtime problems (missing token, an
        intents spec that can't possibly resolve, an unauthenticated front-end
        bound to a public interface).
        """
        errors: list[str] = []

        if not self.token:
            errors.append("CLAWCORD_TOKEN must be set in your environment or .env file.")

        if isinstance(self.bot.intents, list) and not self.bot.intents:
            errors.append(
                "bot.intents is an empty list. List at least one intent name "
                "(e.g. GUILDS) or give a numeric bitmask."
            )

        if not self.bot.gateway_url.startswith(("ws://", "wss://")):
            errors.append(
                f"bot.gateway_url '{self.bot.gateway_url}' must start with ws:// or wss://."
            )

        if not self.bot.api_base_url.startswith(("http://", "https://")):
            errors.append(
                f"bot.api_base_url '{self.bot.api_base_url}' must start with http:// or https://."
            )

        if self.bot.sandbox and not self.bot.sandbox_api_base_url:
            errors.append(
                "bot.sandbox is on but bot.sandbox_api_base_url is not set."
            )

        if (
            self.server.enabled
            and self.server.host not in ("127.0.0.1", "localhost", "::1")
            and not self.server.access_token
        ):
            errors.append(
                f"server.host '{self.server.host}' exposes the event server beyond "
                f"localhost; set server.access_token."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nClawCord startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

import threading as _threading

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"bot", "server", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CLAWCORD_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("CLAWCORD_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{
                    k: v
                    for k, v in _load_yaml(_resolve_config_path(None)).items()
                    if k in _KNOWN_SECTIONS
                }
            )
    return _singleton
