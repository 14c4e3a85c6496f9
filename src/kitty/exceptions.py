"""
exceptions.py — Kitty Error Hierarchy

Kitty-specific exceptions live here. LLM transport errors live in
kitty.brain (re-exported below for convenience) and configuration errors in
kitty.config.settings.

Hierarchy:
    KittyError
    ├── AgentError
    │   └── TurnCancelledError
    └── ToolError
        └── ToolPathError
    LLMError  (from kitty.brain.llm_client)
    ├── LLMConnectionError
    ├── LLMRateLimitError
    ├── LLMContextError
    └── LLMInvalidRequestError
"""

from __future__ import annotations

from kitty.brain.llm_client import (  # noqa: F401  re-exported
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)


class KittyError(Exception):
    """Base class for all Kitty exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────


class AgentError(KittyError):
    """Base for agent orchestration errors."""


class TurnCancelledError(AgentError):
    """The caller cancelled an in-flight turn. No assistant reply was recorded."""


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────


class ToolError(KittyError):
    """Raised by a tool handler; the executor records it as a failed task."""


class ToolPathError(ToolError):
    """A filesystem tool was asked to touch a path outside its working directory."""

    def __init__(self, path: str, root: str) -> None:
        self.path = path
        self.root = root
        super().__init__(f"Path '{path}' is outside the working directory '{root}'")
