"""
agent/events.py — Turn Event Stream

Agent.run_turn() yields these, in order, while a turn runs:

  TextChunkEvent   — a piece of the streamed answer
  ToolUseEvent     — a task is about to call a tool
  ToolResultEvent  — that tool returned (successfully or not)
  ThinkingEvent    — a planning / reflection / decision note

Callers that prefer callbacks pass a TurnCallbacks subclass to Agent.chat().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from kitty.agent.task import ThinkingStep


@dataclass(frozen=True)
class TextChunkEvent:
    text: str


@dataclass(frozen=True)
class ToolUseEvent:
    task_id: str
    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent:
    task_id: str
    tool_name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class ThinkingEvent:
    step: ThinkingStep


AgentEvent = Union[TextChunkEvent, ToolUseEvent, ToolResultEvent, ThinkingEvent]


class TurnCallbacks:
    """
    Named hooks for Agent.chat(). Override the ones you need; the rest are
    no-ops. Hooks may be plain or async functions.
    """

    def on_text_chunk(self, text: str) -> Optional[Any]:
        return None

    def on_tool_use(self, event: ToolUseEvent) -> Optional[Any]:
        return None

    def on_tool_result(self, event: ToolResultEvent) -> Optional[Any]:
        return None

    def on_thinking(self, step: ThinkingStep) -> Optional[Any]:
        return None
