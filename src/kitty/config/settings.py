"""
config/settings.py — Kitty Runtime Settings

Merges a YAML config file (defaults/structure) with .env and environment
variables (secrets). Pydantic-powered: all fields are validated and typed.

  - Each section is a pydantic model with field validators that reject bad
    values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a human-readable, numbered list of every problem found
  - load_settings() respects the KITTY_CONFIG env var as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kitty.memory.token_budget import MIN_CONTEXT_WINDOW


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_REASONING_MODES = {"low", "medium", "high"}

DEFAULT_CONFIG_PATH = Path(".kitty/config.yaml")

# Sections read from the YAML file by the load_settings() call in progress
_yaml_sections: ContextVar[Optional[dict]] = ContextVar("kitty_yaml_sections", default=None)


def _is_official_openai(base_url: Optional[str]) -> bool:
    return not base_url or "api.openai.com" in base_url


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient LLM errors."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.retry.max_attempts must be >= 1")
        return v


class LLMSettings(BaseModel):
    model: str = "gpt-4o-mini"
    temperature: Optional[float] = None     # None = provider default
    max_tokens: int = 4096                  # upper bound on a single reply
    timeout_seconds: float = 120.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)

    @field_validator("max_tokens")
    @classmethod
    def _min_reply_tokens(cls, v: int) -> int:
        if v < 16:
            raise ValueError("llm.max_tokens must be >= 16")
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("model")
    @classmethod
    def _non_empty_model(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("llm.model must not be empty")
        return v.strip()


class TokenSettings(BaseModel):
    context_window: int = 128_000
    summarize_threshold: float = 0.9
    keep_recent_messages: int = 10
    completion_reserve: int = 2048
    summary_max_tokens: int = 2000
    encoding_model: str = "gpt-3.5-turbo"

    @field_validator("context_window")
    @classmethod
    def _min_window(cls, v: int) -> int:
        if v < MIN_CONTEXT_WINDOW:
            raise ValueError(f"tokens.context_window must be >= {MIN_CONTEXT_WINDOW}")
        return v

    @field_validator("summarize_threshold")
    @classmethod
    def _valid_threshold(cls, v: float) -> float:
        if not (0.0 < v <= 1.0):
            raise ValueError("tokens.summarize_threshold must be in (0.0, 1.0]")
        return v

    @field_validator("keep_recent_messages", "completion_reserve")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("tokens.keep_recent_messages and tokens.completion_reserve must be >= 0")
        return v

    @field_validator("summary_max_tokens")
    @classmethod
    def _positive_summary(cls, v: int) -> int:
        if v < 1:
            raise ValueError("tokens.summary_max_tokens must be >= 1")
        return v


class AgentSettings(BaseModel):
    name: str = "Kitty"
    max_iterations: int = 5
    reasoning_mode: str = "high"
    result_preview_chars: int = 2000
    final_preview_chars: int = 1000
    verify_writes: bool = True
    system_prompt: Optional[str] = None

    @field_validator("max_iterations")
    @classmethod
    def _positive_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_iterations must be >= 1")
        return v

    @field_validator("reasoning_mode")
    @classmethod
    def _valid_reasoning(cls, v: str) -> str:
        lower = v.lower()
        if lower not in _VALID_REASONING_MODES:
            raise ValueError(
                f"agent.reasoning_mode must be one of "
                f"{sorted(_VALID_REASONING_MODES)}, got '{v}'"
            )
        return lower

    @field_validator("result_preview_chars", "final_preview_chars")
    @classmethod
    def _positive_preview(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent preview lengths must be >= 1")
        return v


class ToolSettings(BaseModel):
    working_dir: str = "."
    timeout_seconds: float = 30.0
    max_result_chars: int = 20_000
    disabled: list[str] = Field(default_factory=list)     # tool names to hide, e.g. execute_command

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tools.timeout_seconds must be > 0")
        return v


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: str = ".kitty/logs"
    max_file_size_mb: int = 10
    backup_count: int = 3
    console_output: bool = False
    json_format: bool = True

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
    Kitty runtime settings.

    Sources: environment variables, the .env file, the YAML config file and
    field defaults. Secrets come only from the environment or .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")

    # -- Structured config (from the YAML file) ------------------------------
    llm: LLMSettings = Field(default_factory=LLMSettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority, highest first: constructor kwargs, env, .env, YAML, defaults."""
        yaml_settings = InitSettingsSource(settings_cls, init_kwargs=_yaml_sections.get() or {})
        return init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings

    @field_validator("openai_base_url", mode="before")
    @classmethod
    def _blank_base_url(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v).rstrip("/")

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMSettings(**v) if isinstance(v, dict) else v

    @field_validator("tokens", mode="before")
    @classmethod
    def _coerce_tokens(cls, v: Any) -> Any:
        return TokenSettings(**v) if isinstance(v, dict) else v

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentSettings(**v) if isinstance(v, dict) else v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        return ToolSettings(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingSettings(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def model(self) -> str:
        return self.llm.model

    @property
    def agent_name(self) -> str:
        return self.agent.name

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def working_dir(self) -> Path:
        return Path(self.tools.working_dir).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this method
        catches the cross-field and runtime problems they can't see.
        """
        errors: list[str] = []

        # ── API key for the official endpoint ────────────────────────────────
        if _is_official_openai(self.openai_base_url) and not self.openai_api_key:
            errors.append(
                "OPENAI_API_KEY is not set. Add it to your .env file, or point "
                "OPENAI_BASE_URL at an OpenAI-compatible server."
            )

        # ── Working directory exists ─────────────────────────────────────────
        wd = self.working_dir
        if not wd.is_dir():
            errors.append(f"tools.working_dir '{self.tools.working_dir}' is not a directory.")

        # ── Completion reserve fits in the window ────────────────────────────
        if self.tokens.completion_reserve >= self.tokens.context_window:
            errors.append(
                f"tokens.completion_reserve ({self.tokens.completion_reserve}) must be "
                f"smaller than tokens.context_window ({self.tokens.context_window})."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nKitty startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in {DEFAULT_CONFIG_PATH} or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.RLock()     # load_settings() re-enters from get_settings()

_KNOWN_SECTIONS = {"llm", "tokens", "agent", "tools", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return data


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. KITTY_CONFIG environment variable
      3. Default: .kitty/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("KITTY_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging the YAML config with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    sections = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    token = _yaml_sections.set(sections)
    try:
        instance = Settings()
    finally:
        _yaml_sections.reset(token)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            load_settings()
        return _singleton  # type: ignore[return-value]
