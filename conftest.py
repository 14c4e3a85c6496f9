"""
Root conftest — isolate environment variables so Settings() behaves the same
on every machine: no API keys, no KITTY_CONFIG, and no local .env file.
"""
import pytest

_ISOLATED_ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "KITTY_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove Kitty env vars for every test so Settings() behaves as if none
    are set unless the test provides them. Also disables .env file loading so
    a developer's .env doesn't leak real credentials into tests."""
    for var in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import kitty.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    # Reset the cached singleton between tests
    monkeypatch.setattr(settings_module, "_singleton", None)
