"""
tests/unit/test_config.py

Tests for config/settings.py:
  - defaults
  - YAML loading, KITTY_CONFIG fallback, unknown sections ignored
  - environment overrides (secrets and nested keys)
  - field validators
  - validate_all() cross-field checks
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kitty.config.settings import (
    AgentSettings,
    ConfigError,
    LLMSettings,
    Settings,
    TokenSettings,
    get_settings,
    load_settings,
)


def _write_yaml(path, text: str):
    path.write_text(text, encoding="utf-8")
    return path


# ─────────────────────────────────────────────────────────────────────────────
# Defaults
# ─────────────────────────────────────────────────────────────────────────────

class TestDefaults:
    def test_defaults(self):
        s = Settings()
        assert s.model == "gpt-4o-mini"
        assert s.llm.temperature is None
        assert s.tokens.context_window == 128_000
        assert s.tokens.summarize_threshold == 0.9
        assert s.tokens.keep_recent_messages == 10
        assert s.agent.max_iterations == 5
        assert s.agent.reasoning_mode == "high"
        assert s.agent.verify_writes is True
        assert s.agent_name == "Kitty"
        assert s.openai_api_key is None
        assert s.openai_base_url is None
        assert s.log_level == "INFO"


# ─────────────────────────────────────────────────────────────────────────────
# Loading
# ─────────────────────────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(tmp_path / "nope.yaml")
        assert s.model == "gpt-4o-mini"

    def test_yaml_sections_applied(self, tmp_path):
        cfg = _write_yaml(tmp_path / "config.yaml", """
llm:
  model: gpt-4o
  temperature: 0.2
tokens:
  context_window: 32000
agent:
  max_iterations: 3
  reasoning_mode: LOW
tools:
  working_dir: /tmp
something_else:
  ignored: true
""")
        s = load_settings(cfg)
        assert s.model == "gpt-4o"
        assert s.llm.temperature == 0.2
        assert s.tokens.context_window == 32000
        assert s.agent.max_iterations == 3
        assert s.agent.reasoning_mode == "low"
        assert str(s.working_dir) == "/tmp"

    def test_kitty_config_env_var(self, tmp_path, monkeypatch):
        cfg = _write_yaml(tmp_path / "alt.yaml", "llm:\n  model: from-env-path\n")
        monkeypatch.setenv("KITTY_CONFIG", str(cfg))
        assert load_settings().model == "from-env-path"

    def test_explicit_path_beats_env_var(self, tmp_path, monkeypatch):
        env_cfg = _write_yaml(tmp_path / "env.yaml", "llm:\n  model: env\n")
        arg_cfg = _write_yaml(tmp_path / "arg.yaml", "llm:\n  model: arg\n")
        monkeypatch.setenv("KITTY_CONFIG", str(env_cfg))
        assert load_settings(arg_cfg).model == "arg"

    def test_non_mapping_yaml_rejected(self, tmp_path):
        cfg = _write_yaml(tmp_path / "bad.yaml", "- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_settings(cfg)

    def test_empty_yaml_gives_defaults(self, tmp_path):
        cfg = _write_yaml(tmp_path / "empty.yaml", "")
        assert load_settings(cfg).model == "gpt-4o-mini"

    def test_get_settings_returns_loaded_singleton(self, tmp_path):
        cfg = _write_yaml(tmp_path / "c.yaml", "llm:\n  model: singleton\n")
        loaded = load_settings(cfg)
        assert get_settings() is loaded


# ─────────────────────────────────────────────────────────────────────────────
# Environment
# ─────────────────────────────────────────────────────────────────────────────

class TestEnvironment:
    def test_secrets_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8000/v1/")
        s = Settings()
        assert s.openai_api_key == "sk-test"
        assert s.openai_base_url == "http://localhost:8000/v1"

    def test_blank_base_url_is_none(self, monkeypatch):
        monkeypatch.setenv("OPENAI_BASE_URL", "")
        assert Settings().openai_base_url is None

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        cfg = _write_yaml(tmp_path / "c.yaml", "llm:\n  model: from-yaml\n  temperature: 0.3\n")
        monkeypatch.setenv("LLM__MODEL", "from-env")
        s = load_settings(cfg)
        assert s.model == "from-env"
        assert s.llm.temperature == 0.3

    def test_yaml_beats_defaults_without_env(self, tmp_path):
        cfg = _write_yaml(tmp_path / "c.yaml", "agent:\n  max_iterations: 2\n")
        assert load_settings(cfg).agent.max_iterations == 2

    def test_yaml_does_not_leak_into_later_settings(self, tmp_path):
        load_settings(_write_yaml(tmp_path / "c.yaml", "llm:\n  model: from-yaml\n"))
        assert Settings().model == "gpt-4o-mini"


# ─────────────────────────────────────────────────────────────────────────────
# Field validators
# ─────────────────────────────────────────────────────────────────────────────

class TestValidators:
    @pytest.mark.parametrize("kwargs", [
        {"temperature": 2.5},
        {"model": "   "},
        {"max_tokens": 8},
    ])
    def test_bad_llm_settings(self, kwargs):
        with pytest.raises(ValidationError):
            LLMSettings(**kwargs)

    @pytest.mark.parametrize("kwargs", [
        {"context_window": 31},
        {"summarize_threshold": 0},
        {"summarize_threshold": 1.2},
        {"keep_recent_messages": -1},
        {"summary_max_tokens": 0},
    ])
    def test_bad_token_settings(self, kwargs):
        with pytest.raises(ValidationError):
            TokenSettings(**kwargs)

    @pytest.mark.parametrize("kwargs", [
        {"max_iterations": 0},
        {"reasoning_mode": "extreme"},
        {"result_preview_chars": 0},
    ])
    def test_bad_agent_settings(self, kwargs):
        with pytest.raises(ValidationError):
            AgentSettings(**kwargs)

    def test_bad_log_level(self, tmp_path):
        cfg = _write_yaml(tmp_path / "c.yaml", "logging:\n  level: LOUD\n")
        with pytest.raises(ValidationError):
            load_settings(cfg)


# ─────────────────────────────────────────────────────────────────────────────
# validate_all
# ─────────────────────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_missing_key_for_official_endpoint(self, tmp_path):
        s = load_settings(_write_yaml(tmp_path / "c.yaml", f"tools:\n  working_dir: {tmp_path}\n"))
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            s.validate_all()

    def test_local_server_needs_no_key(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
        s = load_settings(_write_yaml(tmp_path / "c.yaml", f"tools:\n  working_dir: {tmp_path}\n"))
        s.validate_all()

    def test_valid_with_key(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        s = load_settings(_write_yaml(tmp_path / "c.yaml", f"tools:\n  working_dir: {tmp_path}\n"))
        s.validate_all()

    def test_all_problems_reported_together(self, tmp_path):
        cfg = _write_yaml(tmp_path / "c.yaml", f"""
tools:
  working_dir: {tmp_path / "missing"}
tokens:
  context_window: 1000
  completion_reserve: 1000
""")
        with pytest.raises(ConfigError) as exc_info:
            load_settings(cfg).validate_all()
        message = str(exc_info.value)
        assert "3 configuration problem(s)" in message
        assert "OPENAI_API_KEY" in message
        assert "is not a directory" in message
        assert "completion_reserve" in message
