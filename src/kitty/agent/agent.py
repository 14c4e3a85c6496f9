"""
agent/agent.py — Execution Loop

Owns the conversation and runs one user turn at a time:

    1. Budget check     — summarize older history if the window is nearly full
    2. Decide           — Orchestrator.should_create_plan()
    3a. Direct answer   — stream a reply, done
    3b. Plan            — Orchestrator.create_plan() seeds the task ledger
    4. Execute/reflect  — run pending tasks through the ToolExecutor, verify
                          writes by reading them back, ask the Orchestrator
                          whether the request is satisfied; repeat at most
                          max_iterations times
    5. Finalize         — stream an answer synthesized from the whole ledger

run_turn() is an async generator of AgentEvent values; chat() drives it and
dispatches each event to a TurnCallbacks object.

Failure handling:
  - tool failures are recorded on the task and shown to reflection; the loop
    keeps going
  - unreadable orchestrator replies fall back to safe defaults (see
    orchestrator.py)
  - LLMError from a completion request ends the turn; a failed answer is
    stored in history as an "Error: ..." assistant message
  - cancel() stops the turn at the next task or stream chunk boundary with
    TurnCancelledError; no partial answer is stored
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Optional

from kitty.agent.context_builder import ContextBuilder
from kitty.agent.events import (
    AgentEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolResultEvent,
    ToolUseEvent,
    TurnCallbacks,
)
from kitty.agent.orchestrator import Orchestrator, preview_result
from kitty.agent.task import Task, ThinkingKind, ThinkingStep
from kitty.brain.llm_client import BaseLLMClient, LLMError
from kitty.brain.types import LLMConfig, Message
from kitty.exceptions import TurnCancelledError
from kitty.memory.history import ConversationHistory
from kitty.memory.token_budget import MIN_CONTEXT_WINDOW, TokenBudgetManager, TokenUsage
from kitty.observability.logger import bind_turn, clear_turn, get_logger
from kitty.tools.executor import ToolExecutor
from kitty.tools.tool_registry import ToolRegistry
from kitty.tools.types import ToolSchema

log = get_logger(__name__)

WRITE_TOOL = "write_file"
READ_TOOL = "read_file"

_DIRECT_PROMPT = "Format responses using Markdown. Keep responses concise and clear."

_FINAL_PROMPT = """\
Tasks have been executed on the user's behalf. Using their results, give a
complete answer to the user's request.

- Synthesize the results into an answer; don't just list them.
- If tasks failed, explain what went wrong.
- If a file was written successfully, don't repeat its content. Say what was
  created and what it contains in a sentence or two."""


class Agent:
    """
    The per-session execution loop.

    Usage:
        agent = Agent.from_settings(settings, llm_client=client)
        await agent.initialize()
        async for event in agent.run_turn("explain this repo"):
            ...
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        tool_executor: ToolExecutor,
        tool_registry: ToolRegistry,
        token_budget: TokenBudgetManager,
        max_iterations: int,
        orchestrator: Optional[Orchestrator] = None,
        context_builder: Optional[ContextBuilder] = None,
        keep_recent_messages: int = 10,
        completion_reserve: int = 2048,
        final_preview_chars: int = 1000,
        verify_writes: bool = True,
        system_prompt: Optional[str] = None,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

        self._llm = llm_client
        self._config = llm_config
        self._executor = tool_executor
        self._registry = tool_registry
        self._budget = token_budget
        self._max_iterations = max_iterations
        self._orchestrator = orchestrator or Orchestrator(llm_client, model=llm_config.model)
        self._context = context_builder or ContextBuilder()
        self._keep_recent = keep_recent_messages
        self._completion_reserve = completion_reserve
        self._final_preview_chars = final_preview_chars
        self._verify_writes = verify_writes
        self._session_prompt = system_prompt

        self._history = ConversationHistory()
        self._cancel = asyncio.Event()

    # ─────────────────────────────────────────────────────────────────────────
    # Session
    # ─────────────────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load KITTY.md and learn the model's real context window, if reported."""
        self._context.load()
        await self._refresh_context_window()

    def configure_session(
        self,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        reasoning_mode: Optional[str] = None,
    ) -> None:
        """Adjust the session. Arguments left as None keep their current value."""
        if system_prompt is not None:
            self._session_prompt = system_prompt or None
        if temperature is not None:
            self._config = self._config.with_overrides(temperature=temperature)
        if reasoning_mode is not None:
            self._orchestrator.reasoning_mode = reasoning_mode
        log.info(
            "agent.session_configured",
            has_system_prompt=self._session_prompt is not None,
            temperature=self._config.temperature,
            reasoning_mode=self._orchestrator.reasoning_mode,
        )

    @property
    def current_model(self) -> str:
        return self._config.model

    async def set_model(self, model: str) -> None:
        self._config = self._config.with_overrides(model=model)
        self._orchestrator.model = model
        self._budget.model = model
        log.info("agent.model_changed", model=model)
        await self._refresh_context_window()

    async def list_models(self) -> list[str]:
        return await self._llm.list_models()

    @property
    def history(self) -> list[Message]:
        return self._history.messages

    @property
    def token_budget(self) -> TokenBudgetManager:
        return self._budget

    def token_usage(self) -> TokenUsage:
        return self._budget.get_usage(self._history.messages)

    async def compact_history(self, keep_recent: Optional[int] = None) -> tuple[TokenUsage, TokenUsage]:
        """Summarize the history now. Returns usage before and after."""
        before = self.token_usage()
        keep = self._keep_recent if keep_recent is None else keep_recent
        self._history.replace(await self._budget.summarize_conversation(self._history.messages, keep))
        after = self.token_usage()
        log.info("agent.compacted", before=round(before.percentage_used, 1), after=round(after.percentage_used, 1))
        return before, after

    def clear_history(self) -> None:
        self._history.clear()
        log.info("agent.history_cleared")

    def cancel(self) -> None:
        """Ask the running turn to stop at its next checkpoint."""
        self._cancel.set()

    # ─────────────────────────────────────────────────────────────────────────
    # Turn entry points
    # ─────────────────────────────────────────────────────────────────────────

    async def chat(self, message: str, callbacks: Optional[TurnCallbacks] = None) -> None:
        """Run one turn, dispatching each event to `callbacks`."""
        callbacks = callbacks or TurnCallbacks()
        async with aclosing(self.run_turn(message)) as events:
            async for event in events:
                if isinstance(event, TextChunkEvent):
                    outcome = callbacks.on_text_chunk(event.text)
                elif isinstance(event, ToolUseEvent):
                    outcome = callbacks.on_tool_use(event)
                elif isinstance(event, ToolResultEvent):
                    outcome = callbacks.on_tool_result(event)
                else:
                    outcome = callbacks.on_thinking(event.step)
                if inspect.isawaitable(outcome):
                    await outcome

    async def run_turn(self, message: str) -> AsyncIterator[AgentEvent]:
        """Run one turn, yielding events in the order they happen."""
        self._cancel.clear()
        bind_turn(uuid.uuid4().hex[:12])
        log.info("agent.turn_start", user_message=message[:120], history=len(self._history))
        t0 = time.monotonic()

        try:
            async with aclosing(self._turn(message)) as events:
                async for event in events:
                    yield event
            log.info("agent.turn_done", ms=round((time.monotonic() - t0) * 1000))
        except TurnCancelledError:
            log.info("agent.turn_cancelled", ms=round((time.monotonic() - t0) * 1000))
            raise
        except LLMError as e:
            log.error("agent.turn_error", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            clear_turn()

    # ─────────────────────────────────────────────────────────────────────────
    # Turn phases
    # ─────────────────────────────────────────────────────────────────────────

    async def _turn(self, message: str) -> AsyncIterator[AgentEvent]:
        # ── 1. Budget check, before the new message lands ─────────────────────
        usage = self.token_usage()
        if usage.should_summarize:
            yield _thinking(
                ThinkingKind.PLANNING,
                f"Context window at {usage.percentage_used:.1f}%. "
                "Summarizing earlier conversation to free up space...",
            )
            _, after = await self.compact_history()
            yield _thinking(
                ThinkingKind.PLANNING,
                f"Conversation summarized. Token usage went from "
                f"{usage.percentage_used:.1f}% to {after.percentage_used:.1f}%.",
            )
        self._check_cancelled()

        # ── 2. Decide ─────────────────────────────────────────────────────────
        history_texts = self._history.texts()
        self._history.add_user(message)
        tools = self._registry.list_schemas()

        yield _thinking(ThinkingKind.PLANNING, "Deciding whether this request needs a task plan...")
        decision = await self._orchestrator.should_create_plan(message, tools, history_texts)
        yield _thinking(ThinkingKind.DECISION, decision.reasoning)
        self._check_cancelled()

        if not decision.should_plan:
            prompt = self._system_prompt(_DIRECT_PROMPT)
            async with aclosing(self._respond([Message.system(prompt), *self._history.messages])) as events:
                async for event in events:
                    yield event
            return

        # ── 3. Plan ───────────────────────────────────────────────────────────
        yield _thinking(ThinkingKind.PLANNING, "Creating a task plan to fulfill this request...")
        plan = await self._orchestrator.create_plan(message, tools, history_texts)
        yield _thinking(
            ThinkingKind.PLANNING,
            f"Plan: {plan.thinking or '(no notes)'}\n\nTasks to execute: {len(plan.tasks)}",
        )
        ledger = list(plan.tasks)

        # ── 4. Execute / reflect ──────────────────────────────────────────────
        if ledger:
            async with aclosing(self._execute(message, ledger, tools)) as events:
                async for event in events:
                    yield event

        # ── 5. Finalize ───────────────────────────────────────────────────────
        self._check_cancelled()
        async with aclosing(self._respond(self._final_messages(message, ledger))) as events:
            async for event in events:
                yield event

    async def _execute(
        self,
        message: str,
        ledger: list[Task],
        tools: list[ToolSchema],
    ) -> AsyncIterator[AgentEvent]:
        known_tools = {t.name for t in tools}
        verify_counter = len(ledger)

        for iteration in range(1, self._max_iterations + 1):
            pending = [t for t in ledger if not t.completed]
            log.info("agent.iteration", iteration=iteration, pending=len(pending), ledger=len(ledger))

            for task in pending:
                self._check_cancelled()
                async with aclosing(self._run_task(task)) as events:
                    async for event in events:
                        yield event

                path = (task.tool_input or {}).get("path")
                if (
                    self._verify_writes
                    and task.tool_name == WRITE_TOOL
                    and task.successful
                    and isinstance(path, str)
                    and path
                ):
                    verify = Task(
                        id=f"verify-{verify_counter}",
                        description=f"Verify content written to {path}",
                        tool_name=READ_TOOL,
                        tool_input={"path": path},
                    )
                    verify_counter += 1
                    ledger.append(verify)
                    async with aclosing(self._run_task(verify)) as events:
                        async for event in events:
                            yield event

            self._check_cancelled()
            steps: asyncio.Queue[ThinkingStep] = asyncio.Queue()
            reflecting = asyncio.ensure_future(
                self._orchestrator.reflect_on_results(message, ledger, tools, on_step=steps.put_nowait)
            )
            try:
                # Steps go out as the orchestrator produces them, not after it returns
                while not reflecting.done():
                    next_step = asyncio.ensure_future(steps.get())
                    await asyncio.wait({next_step, reflecting}, return_when=asyncio.FIRST_COMPLETED)
                    if next_step.done():
                        yield ThinkingEvent(next_step.result())
                    else:
                        next_step.cancel()
                while not steps.empty():
                    yield ThinkingEvent(steps.get_nowait())
                reflection = reflecting.result()
            finally:
                if not reflecting.done():
                    reflecting.cancel()

            if reflection.is_complete:
                break

            survivors = _filter_actions(reflection.next_actions, known_tools)
            if not survivors:
                log.info("agent.no_next_actions", iteration=iteration)
                break

            issues = ", ".join(reflection.issues) or "Continuing with additional tasks..."
            yield _thinking(ThinkingKind.DECISION, f"Not complete yet. {issues}")
            ledger.extend(survivors)
        else:
            log.warning("agent.iteration_limit", max_iterations=self._max_iterations)

    async def _run_task(self, task: Task) -> AsyncIterator[AgentEvent]:
        if not task.needs_tool:
            task.record(None, successful=True)
            return

        tool_input = dict(task.tool_input or {})
        yield ToolUseEvent(task_id=task.id, tool_name=task.tool_name, tool_input=tool_input)

        result = await self._executor.execute(task.tool_name, tool_input)
        task.record(result.content, successful=not result.is_error)
        if result.is_error:
            log.warning("agent.task_failed", task_id=task.id, tool=task.tool_name, error=result.content[:200])

        yield ToolResultEvent(
            task_id=task.id,
            tool_name=task.tool_name,
            content=result.content,
            is_error=result.is_error,
        )

    async def _respond(self, messages: list[Message]) -> AsyncIterator[AgentEvent]:
        """
        Stream an answer and store it in history. A failed request is stored
        and shown as an "Error: ..." message, then re-raised.
        """
        available = self._budget.get_available_completion_tokens(messages, self._completion_reserve)
        config = self._config.with_overrides(
            max_tokens=min(available, self._config.max_tokens),
            stream=True,
        )

        parts: list[str] = []
        try:
            async with aclosing(self._llm.stream(messages, config)) as chunks:
                async for chunk in chunks:
                    self._check_cancelled()
                    parts.append(chunk)
                    yield TextChunkEvent(chunk)
        except LLMError as e:
            error_text = f"Error: {e}"
            self._history.add_assistant(error_text)
            yield TextChunkEvent(error_text)
            raise

        self._history.add_assistant("".join(parts))

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise TurnCancelledError("Turn cancelled by user")

    def _system_prompt(self, instructions: str) -> str:
        base = self._context.build_system_prompt(self._session_prompt)
        return f"{base}\n\n{instructions}"

    def _final_messages(self, message: str, ledger: list[Task]) -> list[Message]:
        summary = [
            {
                "id": t.id,
                "description": t.description,
                "successful": t.successful,
                "result": preview_result(t.result, self._final_preview_chars, marker=False),
            }
            for t in ledger
        ]
        # The task summary is request-only context; history keeps just the answer.
        prompt = (
            f'Original user request: "{message}"\n\n'
            f"Tasks executed and their results:\n{json.dumps(summary, indent=2)}\n\n"
            "Please answer the user based on these results."
        )
        return [
            Message.system(self._system_prompt(_FINAL_PROMPT)),
            *self._history.messages,
            Message.user(prompt),
        ]

    async def _refresh_context_window(self) -> None:
        try:
            window = await self._llm.context_window(self._config.model)
        except LLMError as e:
            log.warning("agent.context_window_failed", model=self._config.model, error=str(e))
            return
        if window is None:
            return
        if window < MIN_CONTEXT_WINDOW:
            log.warning("agent.context_window_ignored", model=self._config.model, reported=window)
            return
        self._budget.update_max_tokens(window)

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        llm_client: BaseLLMClient,
        tool_registry: Optional[ToolRegistry] = None,
        encoding=None,
    ) -> "Agent":
        """
        Create an Agent from the Kitty Settings object. Without a registry,
        the built-in filesystem and terminal tools are registered on the
        working directory. Tools named in tools.disabled are switched off.
        """
        from kitty.memory.token_budget import load_encoding
        from kitty.tools.filesystem import register_filesystem_tools
        from kitty.tools.terminal import register_terminal_tools

        if tool_registry is None:
            tool_registry = ToolRegistry()
            register_filesystem_tools(tool_registry, settings.working_dir)
            register_terminal_tools(tool_registry, settings.working_dir)
        for name in settings.tools.disabled:
            if name not in tool_registry:
                log.warning("agent.unknown_disabled_tool", tool=name)
            tool_registry.disable(name)

        llm_config = LLMConfig(
            model=settings.llm.model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout_seconds=settings.llm.timeout_seconds,
        )
        executor = ToolExecutor(
            tool_registry,
            timeout_seconds=settings.tools.timeout_seconds,
            max_result_chars=settings.tools.max_result_chars,
        )
        budget = TokenBudgetManager(
            llm_client,
            model=settings.llm.model,
            max_tokens=settings.tokens.context_window,
            summarization_threshold=settings.tokens.summarize_threshold,
            encoding=encoding or load_encoding(settings.tokens.encoding_model),
            summary_max_tokens=settings.tokens.summary_max_tokens,
        )
        orchestrator = Orchestrator(
            llm_client,
            model=settings.llm.model,
            reasoning_mode=settings.agent.reasoning_mode,
            result_preview_chars=settings.agent.result_preview_chars,
        )
        return cls(
            llm_client=llm_client,
            llm_config=llm_config,
            tool_executor=executor,
            tool_registry=tool_registry,
            token_budget=budget,
            max_iterations=settings.agent.max_iterations,
            orchestrator=orchestrator,
            context_builder=ContextBuilder(settings.working_dir, agent_name=settings.agent.name),
            keep_recent_messages=settings.tokens.keep_recent_messages,
            completion_reserve=settings.tokens.completion_reserve,
            final_preview_chars=settings.agent.final_preview_chars,
            verify_writes=settings.agent.verify_writes,
            system_prompt=settings.agent.system_prompt,
        )


def _thinking(kind: ThinkingKind, content: str) -> ThinkingEvent:
    return ThinkingEvent(ThinkingStep(kind=kind, content=content))


def _filter_actions(actions: list[Task], known_tools: set[str]) -> list[Task]:
    """Drop follow-up tasks that name a tool we don't have. No-tool tasks stay."""
    kept = []
    for action in actions:
        if action.tool_name is None or action.tool_name in known_tools:
            kept.append(action)
        else:
            log.warning("agent.unknown_tool_dropped", task_id=action.id, tool=action.tool_name)
    return kept
