"""
agent/task.py — Per-Turn Task Ledger Types

A Task is one planned unit of work: usually a single tool invocation, or a
note-to-self with no tool attached. Tasks are created by the Orchestrator
(initial plan or reflection follow-ups), executed exactly once by the Agent
and never removed from the turn's ledger.

ThinkingStep is the observability stream the Agent emits while it decides,
plans and reflects. It is shown to the user and not persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from kitty.exceptions import AgentError

# Values models use when they mean "no tool"
_NO_TOOL_NAMES = {"", "none", "null"}


class ThinkingKind(str, Enum):
    PLANNING = "planning"
    REFLECTION = "reflection"
    DECISION = "decision"


@dataclass
class ThinkingStep:
    kind: ThinkingKind
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Task:
    """
    One entry in the per-turn ledger.

    `result` and `successful` are written together by record(), once.
    """
    id: str
    description: str
    tool_name: Optional[str] = None
    tool_input: Optional[dict[str, Any]] = None
    completed: bool = False
    successful: Optional[bool] = None
    result: Any = None

    @property
    def needs_tool(self) -> bool:
        return self.tool_name is not None

    def record(self, result: Any, successful: bool) -> None:
        if self.completed:
            raise AgentError(f"Task '{self.id}' was already executed")
        self.result = result
        self.successful = successful
        self.completed = True

    @classmethod
    def from_model_output(cls, data: dict[str, Any], fallback_id: str) -> "Task":
        """
        Build a fresh, not-yet-run Task from a model-produced dict.

        Accepts camelCase (toolName/toolInput) or snake_case keys. Whatever
        the model said about completion or results is ignored.
        """
        raw_name = data.get("toolName", data.get("tool_name"))
        tool_name = str(raw_name).strip() if raw_name is not None else None
        if tool_name is not None and tool_name.lower() in _NO_TOOL_NAMES:
            tool_name = None

        raw_input = data.get("toolInput", data.get("tool_input"))
        tool_input = raw_input if isinstance(raw_input, dict) else None

        task_id = data.get("id")
        return cls(
            id=str(task_id) if task_id not in (None, "") else fallback_id,
            description=str(data.get("description") or "").strip() or "(no description)",
            tool_name=tool_name,
            tool_input=tool_input,
        )


@dataclass
class PlanDecision:
    should_plan: bool
    reasoning: str


@dataclass
class Plan:
    thinking: str
    tasks: list[Task] = field(default_factory=list)


@dataclass
class Reflection:
    is_complete: bool
    reasoning: str
    issues: list[str] = field(default_factory=list)
    next_actions: list[Task] = field(default_factory=list)
