"""
brain/types.py — Kitty Brain Data Models

Shared types used by the chat-completion client, the token budget manager
and the agent. The OpenAI-compatible client maps SDK response shapes into
these types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"           # tool result fed back to LLM


class FinishReason(str, Enum):
    STOP = "stop"               # normal completion
    LENGTH = "length"           # hit max_tokens


# ─────────────────────────────────────────────────────────────────────────────
# Tool calling types
# ─────────────────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A single tool invocation attached to an assistant message."""
    id: str = Field(..., description="Unique ID for this tool call (from LLM)")
    name: str = Field(..., description="Tool/function name to call")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Parsed JSON arguments")


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single message in the conversation.

    Tool results use role=TOOL with tool_call_id pointing at the call they
    answer. Assistant messages that request tools carry tool_calls.
    """
    role: Role
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None     # assistant → wants to call tools
    tool_call_id: Optional[str] = None              # tool → which call this answers
    name: Optional[str] = None                      # optional sender name

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "Message":
        return cls(role=Role.TOOL, tool_call_id=tool_call_id, content=content)


# ─────────────────────────────────────────────────────────────────────────────
# LLM config
# ─────────────────────────────────────────────────────────────────────────────


class LLMConfig(BaseModel):
    """
    Per-request LLM configuration.
    temperature=None leaves the provider default in place.
    """
    model: str
    temperature: Optional[float] = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    stream: bool = False
    timeout_seconds: float = 120.0

    def with_overrides(self, **changes: Any) -> "LLMConfig":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)


# ─────────────────────────────────────────────────────────────────────────────
# LLM response
# ─────────────────────────────────────────────────────────────────────────────


class CompletionUsage(BaseModel):
    """Provider-reported token counts for one request."""
    input_tokens: int = 0
    output_tokens: int = 0


class LLMResponse(BaseModel):
    """Normalised response from the chat-completion endpoint."""
    content: Optional[str] = None
    finish_reason: FinishReason = FinishReason.STOP
    usage: CompletionUsage = Field(default_factory=CompletionUsage)
    model: str = ""
