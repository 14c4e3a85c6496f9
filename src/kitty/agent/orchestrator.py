"""
agent/orchestrator.py — Decision Engine

Stateless helper the Agent consults at three points of a turn:

  should_create_plan()  → does this request need tools at all?
  create_plan()         → break the request into tool-sized tasks
  reflect_on_results()  → did the executed tasks satisfy the request, and if
                          not, what should run next?

The Orchestrator never executes tools. Each method makes one structured
chat-completion request and parses the reply with parse_decision(); a reply
that can't be parsed falls back to the default that ends the turn soonest
(no plan, empty plan, complete). Transport errors (LLMError) propagate.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, Sequence

from kitty.agent.decision import parse_decision
from kitty.agent.task import Plan, PlanDecision, Reflection, Task, ThinkingKind, ThinkingStep
from kitty.brain.llm_client import BaseLLMClient
from kitty.brain.types import LLMConfig, Message
from kitty.observability.logger import get_logger
from kitty.tools.types import ToolSchema

log = get_logger(__name__)

REASONING_MODES = ("low", "medium", "high")

TRUNCATION_MARKER = "\n... (truncated, total length: {total} characters)"

# How much recent conversation the decision prompts get to see
_CONTEXT_LINES = 10
_CONTEXT_LINE_CHARS = 500

_DECIDE_SYSTEM = """\
Reasoning: {reasoning}
You decide whether a user's request needs a multi-step plan that uses tools,
or can be answered directly.

Available tools:
{tool_list}

Plan when the request:
- needs files or directories to be listed, read or written
- has several dependent steps (gather information, then act on it)
- explicitly or implicitly asks for something one of the tools can do

Answer directly when the request is:
- a greeting or small talk
- a general knowledge question
- about code or text already included in the message

If a tool would help, prefer planning.

Return ONLY valid JSON, no markdown fences:
{{"shouldPlan": true | false, "reasoning": "one sentence, naming the useful tools if any"}}"""

_PLAN_SYSTEM = """\
Reasoning: {reasoning}
You are the planner for a terminal assistant. Break the user's request into
concrete, ordered tasks.

Available tools (use the exact names):
{tool_list}

Each task names at most one tool and the arguments it needs. Use a task with
"toolName": null for a step that only needs thinking, such as summarising
findings for the user.

Guidelines:
- prefer a dedicated tool over a workaround
- read before you write: if file content depends on information you don't
  have yet, plan the reads now and leave the write for later
- never put placeholder text in file content

Return ONLY valid JSON, no markdown fences:
{{"thinking": "how you intend to approach the request",
  "tasks": [{{"id": "task-1", "description": "...", "toolName": "read_file", "toolInput": {{"path": "README.md"}}}}]}}"""

_REFLECT_SYSTEM = """\
Reasoning: {reasoning}
You review the tasks a terminal assistant executed and decide whether the
user's request has been fulfilled.

Tools available for follow-up work:
{tool_list}

Look for:
- tool errors, or empty results where data was expected
- a write_file task that failed, or whose verification read shows
  placeholder text instead of real content
- parts of the request not addressed yet

Results may be shortened for display. A result ending in
"(truncated, total length: N characters)" is complete on disk; truncation
alone is not a failure.

Only propose nextActions when something is missing or went wrong, and only
with tools from the list above. When writing a file, put the full content in
toolInput.content and keep your reasoning short.

Return ONLY valid JSON, no markdown fences:
{{"isComplete": true | false,
  "reasoning": "brief explanation",
  "issues": ["problems found"],
  "nextActions": [{{"id": "task-N", "description": "...", "toolName": "tool_or_null", "toolInput": {{}}}}]}}"""


class Orchestrator:
    """
    Turns a request plus tool catalogue into plan decisions, plans and
    reflections.

    Usage:
        orchestrator = Orchestrator(llm_client, model="gpt-4o-mini")
        decision = await orchestrator.should_create_plan(message, tools, history)
        if decision.should_plan:
            plan = await orchestrator.create_plan(message, tools, history)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        model: str,
        reasoning_mode: str = "high",
        result_preview_chars: int = 2000,
    ):
        self._llm = llm_client
        self.model = model
        self.reasoning_mode = reasoning_mode
        self._preview_chars = result_preview_chars

    @property
    def reasoning_mode(self) -> str:
        return self._reasoning_mode

    @reasoning_mode.setter
    def reasoning_mode(self, mode: str) -> None:
        mode = mode.lower()
        if mode not in REASONING_MODES:
            raise ValueError(f"reasoning mode must be one of {REASONING_MODES}, got '{mode}'")
        self._reasoning_mode = mode

    # ── Decision points ───────────────────────────────────────────────────────

    async def should_create_plan(
        self,
        message: str,
        tools: Sequence[ToolSchema],
        history_texts: Sequence[str] = (),
    ) -> PlanDecision:
        system = _DECIDE_SYSTEM.format(
            reasoning=self._reasoning_mode,
            tool_list=_format_tools(tools),
        )
        user = (
            f"{_format_context(history_texts)}"
            f'User request: "{message}"\n\nDoes this require task planning?'
        )

        text = await self._ask(system, user, temperature=0.3, max_tokens=500)
        decision = parse_decision(text, _to_plan_decision)
        if not decision.is_ok:
            log.warning("orchestrator.decision_parse_failed", error=decision.error, raw=text[:200])
            return PlanDecision(
                should_plan=False,
                reasoning=f"Could not read the planning decision ({decision.error}); answering directly.",
            )

        result = decision.value
        log.info("orchestrator.decided", should_plan=result.should_plan)
        return result

    async def create_plan(
        self,
        message: str,
        tools: Sequence[ToolSchema],
        history_texts: Sequence[str] = (),
    ) -> Plan:
        system = _PLAN_SYSTEM.format(
            reasoning=self._reasoning_mode,
            tool_list=_format_tools(tools),
        )
        user = f"{_format_context(history_texts)}User request: {message}"

        text = await self._ask(system, user, temperature=0.4, max_tokens=2000)
        decision = parse_decision(text, _to_plan)
        if not decision.is_ok:
            log.warning("orchestrator.plan_parse_failed", error=decision.error, raw=text[:200])
            return Plan(
                thinking=f"Could not read the task plan ({decision.error}); answering without tools.",
                tasks=[],
            )

        plan = decision.value
        log.info("orchestrator.planned", tasks=len(plan.tasks))
        return plan

    async def reflect_on_results(
        self,
        original_request: str,
        tasks: Sequence[Task],
        tools: Sequence[ToolSchema],
        on_step: Optional[Callable[[ThinkingStep], None]] = None,
    ) -> Reflection:
        completed = [t for t in tasks if t.completed]
        failed = [t for t in completed if t.successful is False]

        summary = [
            {
                "id": t.id,
                "description": t.description,
                "tool": t.tool_name,
                "successful": t.successful,
                "result": preview_result(t.result, self._preview_chars),
            }
            for t in completed
        ]

        system = _REFLECT_SYSTEM.format(
            reasoning=self._reasoning_mode,
            tool_list=_format_tools(tools),
        )
        user = (
            f'Original user request: "{original_request}"\n\n'
            f"Tasks executed:\n{json.dumps(summary, indent=2)}\n\n"
            f"Failed tasks: {len(failed)}\n\n"
            "Was the request fulfilled? Are there issues? Should we continue "
            "or try a different approach?"
        )

        _emit(on_step, ThinkingKind.REFLECTION, "Checking the task results against the request...")

        text = await self._ask(system, user, temperature=0.3, max_tokens=4096)
        decision = parse_decision(text, lambda data: _to_reflection(data, first_index=len(tasks) + 1))
        if not decision.is_ok:
            log.warning("orchestrator.reflection_parse_failed", error=decision.error, raw=text[:200])
            reflection = Reflection(
                is_complete=True,
                reasoning="Could not read the reflection; treating the request as complete.",
                issues=[f"Failed to analyze results: {decision.error}"],
            )
        else:
            reflection = decision.value

        _emit(on_step, ThinkingKind.DECISION, reflection.reasoning)
        log.info(
            "orchestrator.reflected",
            is_complete=reflection.is_complete,
            issues=len(reflection.issues),
            next_actions=len(reflection.next_actions),
        )
        return reflection

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _ask(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        config = LLMConfig(model=self.model, temperature=temperature, max_tokens=max_tokens)
        response = await self._llm.generate(
            messages=[Message.system(system), Message.user(user)],
            config=config,
        )
        return response.content or ""


# ─────────────────────────────────────────────────────────────────────────────
# Validators: build typed values from parsed JSON or raise ValueError
# ─────────────────────────────────────────────────────────────────────────────


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _as_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"'{field}' must be a boolean, got {type(value).__name__}")
    return value


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_tasks(value: Any, field: str, first_index: int) -> list[Task]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field}' must be a list, got {type(value).__name__}")
    tasks = []
    for offset, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValueError(f"'{field}[{offset}]' must be an object")
        tasks.append(Task.from_model_output(item, fallback_id=f"task-{first_index + offset}"))
    return tasks


def _to_plan_decision(data: dict[str, Any]) -> PlanDecision:
    if "shouldPlan" not in data and "should_plan" not in data:
        raise KeyError("shouldPlan")
    return PlanDecision(
        should_plan=_as_bool(_pick(data, "shouldPlan", "should_plan"), "shouldPlan"),
        reasoning=_as_text(data.get("reasoning")) or "No reasoning given.",
    )


def _to_plan(data: dict[str, Any]) -> Plan:
    return Plan(
        thinking=_as_text(data.get("thinking")),
        tasks=_as_tasks(data.get("tasks"), "tasks", first_index=1),
    )


def _to_reflection(data: dict[str, Any], first_index: int) -> Reflection:
    raw_complete = _pick(data, "isComplete", "is_complete")
    issues = data.get("issues") or []
    if not isinstance(issues, list):
        raise ValueError(f"'issues' must be a list, got {type(issues).__name__}")
    return Reflection(
        is_complete=True if raw_complete is None else _as_bool(raw_complete, "isComplete"),
        reasoning=_as_text(data.get("reasoning")) or "No reasoning given.",
        issues=[str(i) for i in issues if str(i).strip()],
        next_actions=_as_tasks(
            _pick(data, "nextActions", "next_actions"), "nextActions", first_index
        ),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Prompt helpers
# ─────────────────────────────────────────────────────────────────────────────


def preview_result(result: Any, limit: int, marker: bool = True) -> str:
    """
    Render a task result for a prompt, cut at `limit` characters. With
    `marker`, a cut result says how long the full text was.
    """
    if result is None:
        return "No result"
    if isinstance(result, str):
        text = result
    else:
        try:
            text = json.dumps(result, default=str)
        except (TypeError, ValueError):
            text = str(result)
    if len(text) <= limit:
        return text
    if not marker:
        return text[:limit]
    return text[:limit] + TRUNCATION_MARKER.format(total=len(text))


def _format_tools(tools: Sequence[ToolSchema]) -> str:
    if not tools:
        return "(none)"
    return "\n".join(f"- {t.name}: {t.description}" for t in tools)


def _format_context(history_texts: Sequence[str]) -> str:
    recent = list(history_texts)[-_CONTEXT_LINES:]
    if not recent:
        return ""
    lines = "\n".join(line[:_CONTEXT_LINE_CHARS] for line in recent)
    return f"Recent conversation:\n{lines}\n\n"


def _emit(on_step: Optional[Callable[[ThinkingStep], None]], kind: ThinkingKind, content: str) -> None:
    if on_step is not None:
        on_step(ThinkingStep(kind=kind, content=content))
