"""
interfaces/cli.py — Kitty CLI Interface

Interactive REPL for the Kitty agent.
Uses rich for terminal rendering and aioconsole for async input.

Features:
  - Streaming answers, printed as they arrive
  - Thinking steps rendered dimmed, tool calls as one-line notices
  - /help, /tokens, /compact, /clear, /model, /models, /system
  - Ctrl+C during a turn cancels the turn; Ctrl+D or exit quits

Usage:
    kitty
    kitty --log-level DEBUG --model gpt-4o
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

import aioconsole
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from kitty.agent.agent import Agent
from kitty.agent.events import ToolResultEvent, ToolUseEvent, TurnCallbacks
from kitty.agent.task import ThinkingKind, ThinkingStep
from kitty.brain.llm_client import LLMError
from kitty.config.settings import Settings
from kitty.exceptions import TurnCancelledError
from kitty.memory.token_budget import TokenBudgetManager
from kitty.observability.logger import get_logger

log = get_logger(__name__)

_HELP_TEXT = """
## Kitty Commands

| Command | Description |
|---------|-------------|
| `/help` | Show this help message |
| `/tokens` | Show context window usage |
| `/compact` | Summarise older messages to free up context |
| `/clear` | Clear conversation history |
| `/model [name]` | Show or switch the active model |
| `/models` | List models offered by the endpoint |
| `/system <prompt>` | Set a session system prompt (empty to clear) |
| `exit` / `quit` / Ctrl+D | Exit Kitty |

**Tips:**
- Just type your message; Kitty decides whether it needs tools
- Ctrl+C while Kitty is working cancels the current turn
- A `KITTY.md` in the working directory is loaded as project rules
"""

_THINKING_STYLES = {
    ThinkingKind.PLANNING: "dim cyan",
    ThinkingKind.REFLECTION: "dim magenta",
    ThinkingKind.DECISION: "dim yellow",
}

_PREVIEW_CHARS = 120


class _ConsoleCallbacks(TurnCallbacks):
    """Renders a turn's events onto a rich Console as they arrive."""

    def __init__(self, console: Console):
        self.console = console
        self.streaming = False

    def on_text_chunk(self, text: str) -> None:
        if not self.streaming:
            self.console.print()
            self.streaming = True
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def on_tool_use(self, event: ToolUseEvent) -> None:
        self._end_stream()
        args = ", ".join(f"{k}={escape(_short(v))}" for k, v in event.tool_input.items())
        self.console.print(f"[cyan]→ {event.tool_name}[/]([dim]{args}[/])")

    def on_tool_result(self, event: ToolResultEvent) -> None:
        self._end_stream()
        if event.is_error:
            self.console.print(f"  [red]✗ {escape(_short(event.content))}[/]", highlight=False)
        else:
            self.console.print(f"  [green]✓[/] [dim]{escape(_short(event.content))}[/]", highlight=False)

    def on_thinking(self, step: ThinkingStep) -> None:
        self._end_stream()
        style = _THINKING_STYLES.get(step.kind, "dim")
        self.console.print(f"[{style}]· {step.kind.value}: {escape(step.content)}[/]", highlight=False)

    def _end_stream(self) -> None:
        if self.streaming:
            self.console.print()
            self.streaming = False


# ── CLI Runner ────────────────────────────────────────────────────────────────


class CLIInterface:
    """
    Interactive REPL around a ready Agent.

    The caller builds and initializes the Agent; this class only reads input,
    runs turns and renders them.
    """

    def __init__(self, settings: Settings, agent: Agent, console: Optional[Console] = None):
        self.settings = settings
        self.agent = agent
        self.console = console or Console()
        self._turn_task: Optional[asyncio.Task] = None

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._print_banner()
        await self._repl_loop()

    def _print_banner(self) -> None:
        usage = self.agent.token_usage()
        self.console.print(
            Panel(
                f"[bold]{self.settings.agent_name}[/]  ·  "
                f"Model: [cyan]{self.agent.current_model}[/]  ·  "
                f"Context: [dim]{usage.max_tokens:,} tokens[/]  ·  "
                f"Dir: [dim]{self.settings.working_dir.resolve()}[/]\n\n"
                f"Type your message or [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while True:
            try:
                user_input = await aioconsole.ainput(self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                return

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                return

            await self._dispatch(user_input)

    def _build_prompt(self) -> str:
        usage = self.agent.token_usage()
        colours = {"green": "\033[32m", "yellow": "\033[33m", "red": "\033[31m"}
        colour = colours[TokenBudgetManager.usage_color(usage)]
        reset = "\033[0m"
        return f"{colour}kitty[{usage.percentage_used:.0f}%]{reset}> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if not raw.startswith("/"):
            await self._cmd_ask(raw)
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/help":    lambda _: self._print_help(),
            "/tokens":  lambda _: self._cmd_tokens(),
            "/compact": lambda _: self._cmd_compact(),
            "/clear":   lambda _: self._cmd_clear(),
            "/model":   self._cmd_model,
            "/models":  lambda _: self._cmd_models(),
            "/system":  self._cmd_system,
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return

        result = handler(arg)
        if asyncio.iscoroutine(result):
            await result

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _cmd_ask(self, message: str) -> None:
        """Run one agent turn, cancellable with Ctrl+C."""
        callbacks = _ConsoleCallbacks(self.console)
        loop = asyncio.get_running_loop()
        self._turn_task = asyncio.ensure_future(self.agent.chat(message, callbacks))

        sigint_installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, self.agent.cancel)
            sigint_installed = True
        except (NotImplementedError, RuntimeError):
            # Not available on this platform; Ctrl+C raises KeyboardInterrupt instead
            pass

        try:
            await self._turn_task
        except TurnCancelledError:
            callbacks._end_stream()
            self.console.print("[yellow]🛑 Turn cancelled.[/]")
        except LLMError as e:
            callbacks._end_stream()
            log.warning("cli.turn_failed", error=str(e), error_type=type(e).__name__)
            self.console.print(f"[red]❌ {type(e).__name__}: {escape(str(e))}[/]")
        else:
            callbacks._end_stream()
            self._maybe_suggest_compact()
        finally:
            if sigint_installed:
                loop.remove_signal_handler(signal.SIGINT)
            self._turn_task = None

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    def _cmd_tokens(self) -> None:
        usage = self.agent.token_usage()
        colour = TokenBudgetManager.usage_color(usage)
        self.console.print(
            f"[{colour}]{TokenBudgetManager.format_usage(usage)}[/]  "
            f"[dim]({len(self.agent.history)} messages)[/]"
        )

    async def _cmd_compact(self) -> None:
        if not self.agent.history:
            self.console.print("[dim]Nothing to compact.[/]")
            return
        with self.console.status("[dim]Summarising conversation...[/]", spinner="dots"):
            before, after = await self.agent.compact_history()
        self.console.print(
            f"[cyan]✓ Compacted[/]: {before.percentage_used:.1f}% → {after.percentage_used:.1f}% "
            f"[dim]({TokenBudgetManager.format_usage(after)})[/]"
        )

    def _cmd_clear(self) -> None:
        self.agent.clear_history()
        self.console.print("[dim]Conversation cleared.[/]")

    async def _cmd_model(self, name: str) -> None:
        if not name:
            self.console.print(f"Current model: [cyan]{self.agent.current_model}[/]")
            return
        log.info("cli.model_switch", model=name)
        await self.agent.set_model(name)
        usage = self.agent.token_usage()
        self.console.print(
            f"[green]✓ Model set to[/] [cyan]{name}[/] "
            f"[dim](context window {usage.max_tokens:,} tokens)[/]"
        )

    async def _cmd_models(self) -> None:
        with self.console.status("[dim]Fetching models...[/]", spinner="dots"):
            models = await self.agent.list_models()
        if not models:
            self.console.print("[yellow]The endpoint did not return a model list.[/]")
            return
        table = Table(title="Available models", show_header=False, box=None)
        for model_id in models:
            marker = "[green]●[/]" if model_id == self.agent.current_model else " "
            table.add_row(marker, model_id)
        self.console.print(table)

    def _cmd_system(self, prompt: str) -> None:
        self.agent.configure_session(system_prompt=prompt)
        if prompt:
            self.console.print("[green]✓ Session system prompt set.[/]")
        else:
            self.console.print("[dim]Session system prompt cleared.[/]")

    def _maybe_suggest_compact(self) -> None:
        usage = self.agent.token_usage()
        if TokenBudgetManager.usage_color(usage) == "yellow":
            self.console.print(
                f"[dim yellow]Context at {usage.percentage_used:.0f}%. "
                f"Use /compact to summarise older messages.[/]"
            )


def _short(value) -> str:
    text = str(value).replace("\n", " ")
    return text if len(text) <= _PREVIEW_CHARS else text[:_PREVIEW_CHARS] + "…"
