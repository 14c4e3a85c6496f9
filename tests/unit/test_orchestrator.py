"""
tests/unit/test_orchestrator.py

Tests for agent/orchestrator.py with a mocked LLM client:
  - should_create_plan(): parsed decision, unreadable reply, prompt content
  - create_plan(): task parsing, id fallbacks, "no tool" spellings, failure
  - reflect_on_results(): complete / incomplete, follow-up ids, thinking
    steps, unreadable reply
  - preview_result() and the reasoning-mode setting
  - transport errors propagate
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from kitty.agent.orchestrator import TRUNCATION_MARKER, Orchestrator, preview_result
from kitty.agent.task import Task, ThinkingKind
from kitty.brain.llm_client import LLMConnectionError
from kitty.brain.types import LLMResponse
from kitty.tools.types import ToolSchema


# ─────────────────────────────────────────────────────────────────────────────
# Shared test helpers
# ─────────────────────────────────────────────────────────────────────────────

_TOOLS = [
    ToolSchema(name="read_file", description="Read a file"),
    ToolSchema(name="write_file", description="Write a file"),
]


def _make_orchestrator(*replies, reasoning_mode: str = "high"):
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=[LLMResponse(content=r) for r in replies])
    return Orchestrator(llm, model="test-model", reasoning_mode=reasoning_mode, result_preview_chars=50), llm


def _sent(llm, call_index: int = -1):
    """Return (system_text, user_text, config) of a generate() call."""
    call = llm.generate.call_args_list[call_index]
    messages = call.kwargs["messages"]
    return messages[0].content, messages[1].content, call.kwargs["config"]


def _done(task_id: str, tool: str, result, ok: bool = True) -> Task:
    task = Task(id=task_id, description=f"do {task_id}", tool_name=tool, tool_input={"path": "a.txt"})
    task.record(result, successful=ok)
    return task


# ─────────────────────────────────────────────────────────────────────────────
# should_create_plan
# ─────────────────────────────────────────────────────────────────────────────

class TestShouldCreatePlan:
    @pytest.mark.asyncio
    async def test_plan_needed(self):
        orch, _ = _make_orchestrator('{"shouldPlan": true, "reasoning": "needs read_file"}')
        decision = await orch.should_create_plan("read a.txt", _TOOLS)
        assert decision.should_plan is True
        assert decision.reasoning == "needs read_file"

    @pytest.mark.asyncio
    async def test_direct_answer(self):
        orch, _ = _make_orchestrator('{"shouldPlan": false, "reasoning": "greeting"}')
        decision = await orch.should_create_plan("hi", _TOOLS)
        assert decision.should_plan is False

    @pytest.mark.asyncio
    async def test_snake_case_accepted(self):
        orch, _ = _make_orchestrator('{"should_plan": true}')
        decision = await orch.should_create_plan("list files", _TOOLS)
        assert decision.should_plan is True
        assert decision.reasoning

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["not json at all", '{"reasoning": "x"}', '{"shouldPlan": "yes"}', ""])
    async def test_unreadable_reply_answers_directly(self, reply):
        orch, _ = _make_orchestrator(reply)
        decision = await orch.should_create_plan("read a.txt", _TOOLS)
        assert decision.should_plan is False
        assert decision.reasoning.startswith("Could not read the planning decision")

    @pytest.mark.asyncio
    async def test_prompt_contents(self):
        orch, llm = _make_orchestrator('{"shouldPlan": false}', reasoning_mode="low")
        history = [f"user: line {i}" for i in range(15)] + ["z" * 900]

        await orch.should_create_plan("what's up", _TOOLS, history)

        system, user, config = _sent(llm)
        assert system.startswith("Reasoning: low")
        assert "- read_file: Read a file" in system
        assert "- write_file: Write a file" in system
        assert 'User request: "what\'s up"' in user
        assert "Recent conversation:" in user
        assert "line 5" not in user
        assert "line 6" in user
        assert "z" * 500 in user and "z" * 501 not in user
        assert config.model == "test-model"
        assert config.temperature == 0.3
        assert config.max_tokens == 500

    @pytest.mark.asyncio
    async def test_no_tools_listed_as_none(self):
        orch, llm = _make_orchestrator('{"shouldPlan": false}')
        await orch.should_create_plan("hi", [])
        system, user, _ = _sent(llm)
        assert "(none)" in system
        assert "Recent conversation" not in user

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=LLMConnectionError("down"))
        orch = Orchestrator(llm, model="m")
        with pytest.raises(LLMConnectionError):
            await orch.should_create_plan("hi", _TOOLS)


# ─────────────────────────────────────────────────────────────────────────────
# create_plan
# ─────────────────────────────────────────────────────────────────────────────

class TestCreatePlan:
    @pytest.mark.asyncio
    async def test_tasks_parsed(self):
        reply = json.dumps({
            "thinking": "read then summarise",
            "tasks": [
                {"id": "t1", "description": "Read it", "toolName": "read_file", "toolInput": {"path": "a.txt"}},
                {"id": "t2", "description": "Summarise", "toolName": None},
            ],
        })
        orch, llm = _make_orchestrator(reply)

        plan = await orch.create_plan("summarise a.txt", _TOOLS)

        assert plan.thinking == "read then summarise"
        assert [t.id for t in plan.tasks] == ["t1", "t2"]
        assert plan.tasks[0].tool_name == "read_file"
        assert plan.tasks[0].tool_input == {"path": "a.txt"}
        assert plan.tasks[1].tool_name is None
        assert not any(t.completed for t in plan.tasks)
        _, _, config = _sent(llm)
        assert config.temperature == 0.4
        assert config.max_tokens == 2000

    @pytest.mark.asyncio
    async def test_missing_ids_numbered_from_one(self):
        reply = json.dumps({"tasks": [
            {"description": "a", "toolName": "read_file", "toolInput": {"path": "x"}},
            {"id": "", "description": "b"},
        ]})
        orch, _ = _make_orchestrator(reply)
        plan = await orch.create_plan("x", _TOOLS)
        assert [t.id for t in plan.tasks] == ["task-1", "task-2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("spelling", ["none", "null", "None", ""])
    async def test_no_tool_spellings(self, spelling):
        reply = json.dumps({"tasks": [{"id": "t", "description": "think", "toolName": spelling}]})
        orch, _ = _make_orchestrator(reply)
        plan = await orch.create_plan("x", _TOOLS)
        assert plan.tasks[0].tool_name is None

    @pytest.mark.asyncio
    async def test_model_claims_about_completion_ignored(self):
        reply = json.dumps({"tasks": [{"id": "t", "description": "d", "completed": True, "result": "42"}]})
        orch, _ = _make_orchestrator(reply)
        plan = await orch.create_plan("x", _TOOLS)
        assert plan.tasks[0].completed is False
        assert plan.tasks[0].result is None

    @pytest.mark.asyncio
    async def test_unknown_tools_kept_in_initial_plan(self):
        reply = json.dumps({"tasks": [{"id": "t", "description": "d", "toolName": "web_search"}]})
        orch, _ = _make_orchestrator(reply)
        plan = await orch.create_plan("x", _TOOLS)
        assert plan.tasks[0].tool_name == "web_search"

    @pytest.mark.asyncio
    async def test_missing_tasks_means_empty_plan(self):
        orch, _ = _make_orchestrator('{"thinking": "nothing to do"}')
        plan = await orch.create_plan("x", _TOOLS)
        assert plan.tasks == []
        assert plan.thinking == "nothing to do"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["garbage", '{"tasks": "read the file"}', '{"tasks": ["read"]}'])
    async def test_unreadable_plan_is_empty(self, reply):
        orch, _ = _make_orchestrator(reply)
        plan = await orch.create_plan("x", _TOOLS)
        assert plan.tasks == []
        assert plan.thinking.startswith("Could not read the task plan")


# ─────────────────────────────────────────────────────────────────────────────
# reflect_on_results
# ─────────────────────────────────────────────────────────────────────────────

class TestReflectOnResults:
    @pytest.mark.asyncio
    async def test_complete(self):
        orch, _ = _make_orchestrator('{"isComplete": true, "reasoning": "all good", "issues": [], "nextActions": []}')
        reflection = await orch.reflect_on_results("read a.txt", [_done("t1", "read_file", "hello")], _TOOLS)
        assert reflection.is_complete is True
        assert reflection.reasoning == "all good"
        assert reflection.next_actions == []

    @pytest.mark.asyncio
    async def test_incomplete_with_follow_ups(self):
        reply = json.dumps({
            "isComplete": False,
            "reasoning": "file missing",
            "issues": ["a.txt not found"],
            "nextActions": [
                {"description": "list dir", "toolName": "list_directory", "toolInput": {}},
                {"id": "custom", "description": "retry", "toolName": "read_file", "toolInput": {"path": "b.txt"}},
            ],
        })
        tasks = [_done("t1", "read_file", "Error: nope", ok=False), _done("t2", "read_file", "x")]
        orch, _ = _make_orchestrator(reply)

        reflection = await orch.reflect_on_results("read a.txt", tasks, _TOOLS)

        assert reflection.is_complete is False
        assert reflection.issues == ["a.txt not found"]
        assert [a.id for a in reflection.next_actions] == ["task-3", "custom"]
        # The orchestrator doesn't filter tools; that's the caller's job
        assert reflection.next_actions[0].tool_name == "list_directory"

    @pytest.mark.asyncio
    async def test_is_complete_defaults_to_true(self):
        orch, _ = _make_orchestrator('{"reasoning": "fine"}')
        reflection = await orch.reflect_on_results("x", [_done("t1", "read_file", "y")], _TOOLS)
        assert reflection.is_complete is True

    @pytest.mark.asyncio
    async def test_unreadable_reflection_is_complete_with_issue(self):
        orch, _ = _make_orchestrator("I could not decide")
        reflection = await orch.reflect_on_results("x", [_done("t1", "read_file", "y")], _TOOLS)
        assert reflection.is_complete is True
        assert reflection.next_actions == []
        assert reflection.issues[0].startswith("Failed to analyze results:")

    @pytest.mark.asyncio
    async def test_thinking_steps_emitted(self):
        orch, _ = _make_orchestrator('{"isComplete": true, "reasoning": "done and dusted"}')
        steps = []
        await orch.reflect_on_results("x", [_done("t1", "read_file", "y")], _TOOLS, on_step=steps.append)
        assert [s.kind for s in steps] == [ThinkingKind.REFLECTION, ThinkingKind.DECISION]
        assert steps[1].content == "done and dusted"

    @pytest.mark.asyncio
    async def test_thinking_steps_emitted_on_failure(self):
        orch, _ = _make_orchestrator("???")
        steps = []
        await orch.reflect_on_results("x", [_done("t1", "read_file", "y")], _TOOLS, on_step=steps.append)
        assert [s.kind for s in steps] == [ThinkingKind.REFLECTION, ThinkingKind.DECISION]

    @pytest.mark.asyncio
    async def test_prompt_reports_completed_tasks_and_failures(self):
        pending = Task(id="t3", description="later", tool_name="read_file")
        tasks = [
            _done("t1", "write_file", "Written 5 characters to a.txt"),
            _done("t2", "read_file", "Error: missing", ok=False),
            pending,
        ]
        orch, llm = _make_orchestrator('{"isComplete": true}')

        await orch.reflect_on_results("write a.txt", tasks, _TOOLS)

        _, user, config = _sent(llm)
        assert 'Original user request: "write a.txt"' in user
        assert '"id": "t1"' in user and '"id": "t2"' in user
        assert '"id": "t3"' not in user
        assert "Failed tasks: 1" in user
        assert config.temperature == 0.3
        assert config.max_tokens == 4096

    @pytest.mark.asyncio
    async def test_long_results_truncated_with_marker(self):
        orch, llm = _make_orchestrator('{"isComplete": true}')
        await orch.reflect_on_results("x", [_done("t1", "read_file", "q" * 120)], _TOOLS)
        _, user, _ = _sent(llm)
        assert "total length: 120 characters" in user


# ─────────────────────────────────────────────────────────────────────────────
# Helpers and settings
# ─────────────────────────────────────────────────────────────────────────────

class TestPreviewResult:
    def test_none(self):
        assert preview_result(None, 10) == "No result"

    def test_short_text_unchanged(self):
        assert preview_result("hello", 10) == "hello"

    def test_long_text_gets_marker(self):
        assert preview_result("a" * 15, 10) == "a" * 10 + TRUNCATION_MARKER.format(total=15)

    def test_long_text_without_marker(self):
        assert preview_result("a" * 15, 10, marker=False) == "a" * 10

    def test_structured_result_serialised(self):
        assert preview_result({"k": 1}, 100) == '{"k": 1}'


class TestReasoningMode:
    def test_valid_modes(self):
        orch = Orchestrator(MagicMock(), model="m")
        for mode in ("low", "MEDIUM", "high"):
            orch.reasoning_mode = mode
            assert orch.reasoning_mode == mode.lower()

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValueError):
            Orchestrator(MagicMock(), model="m", reasoning_mode="extreme")
