"""
tools/types.py — Tool System Data Models

Shared types used across the tool registry, the tool executor and the
built-in tool implementations.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Tool registration metadata
# ─────────────────────────────────────────────────────────────────────────────


class ToolSchema(BaseModel):
    """
    Full metadata for a registered tool.
    Stored in ToolRegistry; the orchestrator lists these in its prompts.
    """
    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    category: str = "general"      # e.g. "filesystem"
    enabled: bool = True


# ─────────────────────────────────────────────────────────────────────────────
# Runtime result type
# ─────────────────────────────────────────────────────────────────────────────


class ToolResult(BaseModel):
    """The result of a tool invocation. Errors are data, never exceptions."""
    name: str
    content: str                        # JSON string or plain text
    is_error: bool = False
    duration_ms: float = 0.0

    @classmethod
    def success(cls, name: str, content: str, duration_ms: float = 0.0) -> "ToolResult":
        return cls(name=name, content=content, is_error=False, duration_ms=duration_ms)

    @classmethod
    def error(cls, name: str, error_message: str) -> "ToolResult":
        return cls(name=name, content=f"Error: {error_message}", is_error=True)
