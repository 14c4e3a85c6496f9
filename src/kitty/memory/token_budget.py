"""
memory/token_budget.py — Token Budget Manager

Keeps the conversation inside the model's context window.

  - count_message_tokens() / count_conversation_tokens() — tiktoken-based
    measurement with the chat-format framing overhead
  - get_usage() — derived TokenUsage snapshot, never stored
  - get_available_completion_tokens() — how much room a reply may take
  - summarize_conversation() — replaces older messages with a model-written
    summary, keeping the most recent ones verbatim

Any object with encode(text, disallowed_special=()) -> list can stand in for
the tiktoken encoding, so the manager can be driven without network access.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import tiktoken

from kitty.brain.llm_client import BaseLLMClient
from kitty.brain.types import LLMConfig, Message
from kitty.observability.logger import get_logger

log = get_logger(__name__)

# Chat-format framing: <|start|>{role}\n{content}<|end|>\n
_TOKENS_PER_MESSAGE = 4
# Per tool call on top of its name and arguments
_TOKENS_PER_TOOL_CALL = 3
# Every reply is primed with <|start|>assistant<|message|>
_REPLY_PRIMING_TOKENS = 3

# Completion budget floors
EXHAUSTED_COMPLETION_TOKENS = 32
MIN_COMPLETION_TOKENS = 16
MIN_CONTEXT_WINDOW = EXHAUSTED_COMPLETION_TOKENS

SUMMARY_PREFIX = "Previous conversation summary:\n"
SUMMARY_UNAVAILABLE = "Previous conversation summary unavailable."

_SUMMARIZER_PROMPT = (
    "You are a helpful assistant that summarizes conversations. Create a concise "
    "summary of the following conversation, preserving key information, decisions, "
    "and context. Keep it factual and comprehensive but brief."
)


class Encoding(Protocol):
    def encode(self, text: str, *, disallowed_special: Any = ...) -> list[int]: ...


def load_encoding(model: str = "gpt-3.5-turbo") -> Encoding:
    """Return the tiktoken encoding for `model`, falling back to cl100k_base."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


@dataclass(frozen=True)
class TokenUsage:
    """Snapshot of how much of the context window a message list occupies."""
    current_tokens: int
    max_tokens: int
    percentage_used: float
    should_summarize: bool


class TokenBudgetManager:
    """
    Measures conversations against a context window and compacts them when
    they grow too large.

    Usage:
        budget = TokenBudgetManager(llm_client, model="gpt-4o-mini")
        usage = budget.get_usage(history)
        if usage.should_summarize:
            history = await budget.summarize_conversation(history, keep_recent_count=10)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        model: str,
        max_tokens: int = 128_000,
        summarization_threshold: float = 0.9,
        encoding: Optional[Encoding] = None,
        summary_max_tokens: int = 2000,
    ):
        if max_tokens < MIN_CONTEXT_WINDOW:
            raise ValueError(f"max_tokens must be >= {MIN_CONTEXT_WINDOW}, got {max_tokens}")
        if not (0.0 < summarization_threshold <= 1.0):
            raise ValueError("summarization_threshold must be in (0.0, 1.0]")

        self._llm = llm_client
        self.model = model
        self._max_tokens = max_tokens
        self._threshold = summarization_threshold
        self._encoding = encoding if encoding is not None else load_encoding(model)
        self._summary_max_tokens = summary_max_tokens

    # ── Window ────────────────────────────────────────────────────────────────

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def summarization_threshold(self) -> float:
        return self._threshold

    def update_max_tokens(self, tokens: int) -> None:
        """Resize the window, e.g. after the endpoint reports the real context length."""
        if tokens < MIN_CONTEXT_WINDOW:
            raise ValueError(f"max_tokens must be >= {MIN_CONTEXT_WINDOW}, got {tokens}")
        log.info("token_budget.window_updated", old=self._max_tokens, new=tokens)
        self._max_tokens = tokens

    # ── Counting ──────────────────────────────────────────────────────────────

    def _count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def count_message_tokens(self, message: Message) -> int:
        tokens = _TOKENS_PER_MESSAGE
        tokens += self._count(message.role.value)
        tokens += self._count(message.content or "")

        for call in message.tool_calls or []:
            tokens += self._count(call.name)
            tokens += self._count(json.dumps(call.arguments))
            tokens += _TOKENS_PER_TOOL_CALL

        if message.tool_call_id:
            tokens += self._count(message.tool_call_id)

        return tokens

    def count_conversation_tokens(self, messages: list[Message]) -> int:
        if not messages:
            return 0
        return sum(self.count_message_tokens(m) for m in messages) + _REPLY_PRIMING_TOKENS

    def get_usage(self, messages: list[Message]) -> TokenUsage:
        current = self.count_conversation_tokens(messages)
        percentage = current / self._max_tokens * 100
        return TokenUsage(
            current_tokens=current,
            max_tokens=self._max_tokens,
            percentage_used=percentage,
            should_summarize=percentage >= self._threshold * 100,
        )

    def get_available_completion_tokens(self, messages: list[Message], reserve: int = 1024) -> int:
        """
        Room left for a reply. Keeps `reserve` tokens back when the window
        allows it; otherwise offers half of what's left. Never below 16.
        """
        used = self.count_conversation_tokens(messages)
        remaining = max(0, self._max_tokens - used)

        if remaining == 0:
            return EXHAUSTED_COMPLETION_TOKENS

        preferred = remaining - max(0, reserve)
        completion = preferred if preferred > 0 else max(MIN_COMPLETION_TOKENS, remaining // 2)

        return max(MIN_COMPLETION_TOKENS, min(remaining, completion))

    # ── Summarization ─────────────────────────────────────────────────────────

    async def summarize_conversation(
        self,
        messages: list[Message],
        keep_recent_count: int = 10,
    ) -> list[Message]:
        """
        Replace everything but the last `keep_recent_count` messages with a
        single system message holding a summary of them.

        Returns the input unchanged when there is nothing to compact. If the
        summary request fails, only the recent messages are returned. Never
        raises.
        """
        keep = max(0, keep_recent_count)
        if len(messages) <= keep:
            return messages

        split = len(messages) - keep
        older, recent = messages[:split], messages[split:]

        transcript = "\n\n".join(_render_line(m) for m in older)
        request = [
            Message.system(_SUMMARIZER_PROMPT),
            Message.user(f"Please summarize this conversation:\n\n{transcript}"),
        ]
        config = LLMConfig(model=self.model, temperature=None, max_tokens=self._summary_max_tokens)

        try:
            response = await self._llm.generate(request, config)
        except Exception as e:
            log.warning(
                "token_budget.summarize_failed",
                error=str(e),
                error_type=type(e).__name__,
                dropped=len(older),
            )
            return list(recent)

        summary = (response.content or "").strip() or SUMMARY_UNAVAILABLE
        log.info("token_budget.summarized", compacted=len(older), kept=len(recent))
        return [Message.system(SUMMARY_PREFIX + summary), *recent]

    # ── Display helpers ───────────────────────────────────────────────────────

    @staticmethod
    def format_usage(usage: TokenUsage) -> str:
        return (
            f"{usage.current_tokens:,} / {usage.max_tokens:,} tokens "
            f"({usage.percentage_used:.1f}%)"
        )

    @staticmethod
    def usage_color(usage: TokenUsage) -> str:
        if usage.percentage_used >= 90:
            return "red"
        if usage.percentage_used >= 70:
            return "yellow"
        return "green"


def _render_line(message: Message) -> str:
    content = message.content
    if content is None and message.tool_calls:
        content = "[tool calls: " + ", ".join(c.name for c in message.tool_calls) + "]"
    return f"{message.role.value}: {content or ''}"
