"""
brain/__init__.py — Kitty LLM Brain
"""

from __future__ import annotations

from kitty.brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    ResilientLLMClient,
)
from kitty.brain.types import (
    CompletionUsage,
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Role,
    ToolCall,
)

__all__ = [
    "LLMClientFactory",
    "BaseLLMClient",
    "ResilientLLMClient",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "ToolCall",
    "CompletionUsage",
    "Role",
    "FinishReason",
]


class LLMClientFactory:

    @staticmethod
    def create(api_key: str | None = None, base_url: str | None = None) -> BaseLLMClient:
        """
        Build an OpenAI-compatible client. A key is required for the official
        endpoint; local servers usually accept any placeholder.
        """
        if not api_key and not base_url:
            raise LLMConnectionError("OPENAI_API_KEY is required", provider="openai")
        from kitty.brain.openai_client import OpenAIClient
        return OpenAIClient(api_key=api_key or "not-needed", base_url=base_url)

    @staticmethod
    def from_settings(settings) -> BaseLLMClient:
        """
        Create a client from Settings, wrapped in ResilientLLMClient.

        Reads settings.llm.retry (max_attempts, base_delay, max_delay).

        Example .kitty/config.yaml:
            llm:
              model: gpt-4o-mini
              retry:
                max_attempts: 3
                base_delay: 1.0
                max_delay: 30.0
        """
        primary = LLMClientFactory.create(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
        retry_cfg = settings.llm.retry
        return ResilientLLMClient(
            primary,
            max_attempts=retry_cfg.max_attempts,
            base_delay=retry_cfg.base_delay,
            max_delay=retry_cfg.max_delay,
        )
