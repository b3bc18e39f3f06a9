"""
Root conftest — isolate the bot token so Settings() behaves as if no token
is configured unless a test provides one explicitly. Also disables .env
file loading so a developer's local .env doesn't leak into tests.
"""
import pytest

_TOKEN_ENV_VARS = [
    "CLAWCORD_TOKEN",
    "CLAWCORD_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_token_from_env(monkeypatch):
    for var in _TOKEN_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    # Disable .env file loading by patching Settings.model_config
    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
