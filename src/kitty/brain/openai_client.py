"""
brain/openai_client.py — OpenAI-Compatible Chat-Completion Client

Works with the official OpenAI endpoint and any OpenAI-compatible server
(LiteLLM proxy, vLLM, Ollama's /v1, ...). Handles streaming, model listing
and error normalisation onto the LLMError family.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Optional

import openai
from openai import AsyncOpenAI

from kitty.brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from kitty.brain.types import (
    CompletionUsage,
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Role,
)
from kitty.observability.logger import get_logger

log = get_logger(__name__)

_FINISH_MAP = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
}


def _normalise_error(e: Exception) -> LLMError:
    """Map an openai SDK exception onto the LLMError family."""
    if isinstance(e, openai.AuthenticationError):
        return LLMConnectionError(str(e), provider="openai", status_code=401)
    if isinstance(e, openai.RateLimitError):
        return LLMRateLimitError(str(e), provider="openai")
    if isinstance(e, openai.BadRequestError):
        text = str(e).lower()
        if "context" in text or "too long" in text:
            return LLMContextError(str(e), provider="openai")
        return LLMInvalidRequestError(str(e), provider="openai")
    if isinstance(e, openai.APIConnectionError):
        return LLMConnectionError(str(e), provider="openai")
    return LLMError(str(e), provider="openai", status_code=getattr(e, "status_code", None))


class OpenAIClient(BaseLLMClient):
    """Client for OpenAI and OpenAI-compatible chat-completion endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,     # None = official OpenAI endpoint
        organization: Optional[str] = None,
    ):
        super().__init__(api_key=api_key, base_url=base_url)
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        log.debug("openai.generate.start", model=config.model, message_count=len(messages))

        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(messages, config),
            )
        except openai.APIError as e:
            raise _normalise_error(e) from e

        result = self._from_provider_response(response)
        log.debug(
            "openai.generate.complete",
            model=result.model,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            finish_reason=result.finish_reason,
        )
        return result

    async def stream(self, messages: list[Message], config: LLMConfig) -> AsyncIterator[str]:
        log.debug("openai.stream.start", model=config.model, message_count=len(messages))

        chunks = 0
        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(messages, config),
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                text = getattr(delta, "content", None) if delta is not None else None
                if text:
                    chunks += 1
                    yield text
        except openai.APIError as e:
            raise _normalise_error(e) from e

        log.debug("openai.stream.complete", model=config.model, chunks=chunks)

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except (openai.APIError, OSError) as e:
            log.warning("openai.health_check.failed", error=str(e), error_type=type(e).__name__)
            return False

    async def list_models(self) -> list[str]:
        try:
            page = await self._client.models.list()
        except openai.APIError as e:
            log.warning("openai.list_models.failed", error=str(e))
            return []
        return sorted(m.id for m in page.data)

    async def context_window(self, model: str) -> Optional[int]:
        """
        Look up `model` on the models endpoint. OpenAI itself does not report
        a context length; several compatible servers do, under one of two
        field names.
        """
        try:
            page = await self._client.models.list()
        except openai.APIError as e:
            log.warning("openai.context_window.failed", model=model, error=str(e))
            return None

        for entry in page.data:
            if entry.id != model:
                continue
            for attr in ("context_length", "max_context_length"):
                value = getattr(entry, attr, None)
                if isinstance(value, int) and value > 0:
                    return value
            return None
        return None

    # ── Private helpers ───────────────────────────────────────────────────────

    def _request_kwargs(self, messages: list[Message], config: LLMConfig) -> dict:
        return {
            "model": config.model,
            "messages": self._to_provider_messages(messages),
            "temperature": (
                config.temperature if config.temperature is not None else openai.NOT_GIVEN
            ),
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
            "timeout": config.timeout_seconds,
        }

    def _to_provider_messages(self, messages: list[Message]) -> list[dict]:
        """Translate internal Message list → OpenAI chat message format."""
        result = []
        for msg in messages:
            if msg.role == Role.ASSISTANT:
                entry: dict = {"role": "assistant", "content": msg.content or ""}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                result.append(entry)

            elif msg.role == Role.TOOL:
                result.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                })

            else:
                result.append({"role": msg.role.value, "content": msg.content or ""})

        return result

    def _from_provider_response(self, response) -> LLMResponse:
        """Translate OpenAI ChatCompletion → internal LLMResponse."""
        choice = response.choices[0]
        msg = choice.message

        finish_reason = _FINISH_MAP.get(choice.finish_reason or "stop", FinishReason.STOP)

        usage = CompletionUsage(
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        return LLMResponse(
            content=msg.content,
            finish_reason=finish_reason,
            usage=usage,
            model=response.model,
        )
