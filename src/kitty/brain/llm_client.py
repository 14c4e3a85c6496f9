"""
brain/llm_client.py — Abstract LLM Client + Retry

Every chat-completion backend subclasses BaseLLMClient and implements
generate() and health_check(). stream() has a default implementation that
yields the whole generate() result as one chunk, so non-streaming backends
still satisfy the streaming contract.

  - _call_with_retry() — exponential backoff on transient errors
  - ResilientLLMClient — wraps a client with retry for generate() and
    retry-until-first-chunk for stream()
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Optional

from kitty.brain.types import LLMConfig, LLMResponse, Message
from kitty.observability.logger import get_logger

log = get_logger(__name__)


class BaseLLMClient(ABC):
    """
    Abstract base for chat-completion clients.

    Subclasses must implement:
      - generate()     -> call the LLM, return normalised LLMResponse
      - health_check() -> verify connectivity to the endpoint
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        """Call the LLM and return a normalised response."""
        ...

    async def stream(self, messages: list[Message], config: LLMConfig) -> AsyncIterator[str]:
        """Yield response text incrementally. Default: one chunk from generate()."""
        response = await self.generate(messages, config)
        if response.content:
            yield response.content

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the endpoint is reachable and the API key is valid."""
        ...

    async def list_models(self) -> list[str]:
        """Model ids offered by the endpoint. Empty when unsupported."""
        return []

    async def context_window(self, model: str) -> Optional[int]:
        """Context window of `model` as reported by the endpoint, or None."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Retry logic
# ─────────────────────────────────────────────────────────────────────────────


def _backoff_delay(error: Exception, attempt: int, base_delay: float, max_delay: float) -> float:
    if isinstance(error, LLMRateLimitError) and error.retry_after:
        return min(error.retry_after, max_delay)
    jitter = random.uniform(0, 0.5)
    return min(base_delay * (2 ** attempt) + jitter, max_delay)


async def _call_with_retry(
    client: BaseLLMClient,
    messages: list[Message],
    config: LLMConfig,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> LLMResponse:
    """
    Call client.generate() with exponential backoff on transient errors.

    Retries on LLMConnectionError and LLMRateLimitError. Context, invalid
    request and other LLMError subclasses propagate immediately.

    Backoff formula: min(base_delay * 2^attempt + jitter, max_delay)
    If LLMRateLimitError carries retry_after, that value is used instead.
    """
    last_error: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await client.generate(messages=messages, config=config)

        except (LLMConnectionError, LLMRateLimitError) as e:
            last_error = e
            if attempt == max_attempts - 1:
                break

            delay = _backoff_delay(e, attempt, base_delay, max_delay)
            log.warning(
                "llm.retrying",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)

    raise last_error  # type: ignore[misc]


class ResilientLLMClient(BaseLLMClient):
    """
    Wraps a client with automatic retry on transient errors.

    generate() retries the whole request. stream() retries only while no
    chunk has reached the caller: text already shown cannot be taken back,
    so a failure after the first chunk propagates.

    Usage:
        client = ResilientLLMClient(OpenAIClient(api_key=..., base_url=...))
        response = await client.generate(messages, config)
    """

    def __init__(
        self,
        inner: BaseLLMClient,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        super().__init__(api_key=inner.api_key, base_url=inner.base_url)
        self._inner = inner
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def inner(self) -> BaseLLMClient:
        return self._inner

    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        return await _call_with_retry(
            client=self._inner,
            messages=messages,
            config=config,
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
        )

    async def stream(self, messages: list[Message], config: LLMConfig) -> AsyncIterator[str]:
        for attempt in range(self._max_attempts):
            delivered = False
            try:
                async for chunk in self._inner.stream(messages, config):
                    delivered = True
                    yield chunk
                return
            except (LLMConnectionError, LLMRateLimitError) as e:
                if delivered or attempt == self._max_attempts - 1:
                    raise
                delay = _backoff_delay(e, attempt, self._base_delay, self._max_delay)
                log.warning(
                    "llm.stream_retrying",
                    attempt=attempt + 1,
                    max_attempts=self._max_attempts,
                    delay_s=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def health_check(self) -> bool:
        return await self._inner.health_check()

    async def list_models(self) -> list[str]:
        return await self._inner.list_models()

    async def context_window(self, model: str) -> Optional[int]:
        return await self._inner.context_window(model)

    def __repr__(self) -> str:
        return f"<ResilientLLMClient inner={self._inner!r} attempts={self._max_attempts}>"


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class LLMError(Exception):
    """Base exception for all LLM client errors."""
    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Endpoint unreachable or authentication failed."""


class LLMRateLimitError(LLMError):
    """Rate limit hit; retry with exponential backoff."""
    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Input exceeds model context window."""


class LLMInvalidRequestError(LLMError):
    """Bad request: invalid parameters or unsupported feature."""
