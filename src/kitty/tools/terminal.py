"""
tools/terminal.py — Shell Command Tool

Runs a shell command inside the working directory and returns its output.
Commands matching a small set of destructive patterns are refused, and
secret-looking environment variables are stripped from the child process.

Registered tools:
  - execute_command → run a shell command, capture stdout and stderr
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path

from kitty.exceptions import ToolError
from kitty.observability.logger import get_logger
from kitty.tools.filesystem import resolve_within
from kitty.tools.tool_registry import ToolRegistry

log = get_logger(__name__)

_DANGEROUS_PATTERNS: list[re.Pattern] = [
    re.compile(p)
    for p in [
        r"rm\s+-rf\s+/(?!home|tmp)",
        r"dd\s+if=",
        r"mkfs",
        r":\(\)\s*\{",          # fork bomb
    ]
]

# Env-var name patterns that indicate secrets. Matching variables never reach
# the subprocess, so `printenv` cannot leak them.
_SECRET_ENV_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"API[_-]?KEY",
        r"SECRET",
        r"PASSWORD",
        r"PASSWD",
        r"TOKEN",
        r"CREDENTIAL",
        r"PRIVATE[_-]?KEY",
        r"ACCESS[_-]?KEY",
        r"OPENAI",
        r"AWS[_-]",
    ]
]


def is_dangerous(command: str) -> bool:
    return any(p.search(command) for p in _DANGEROUS_PATTERNS)


def _safe_env() -> dict[str, str]:
    return {
        key: value
        for key, value in os.environ.items()
        if not any(p.search(key) for p in _SECRET_ENV_PATTERNS)
    }


def register_terminal_tools(registry: ToolRegistry, root: str | Path = ".") -> None:
    """Register execute_command on `registry`, confined to `root`."""
    base = Path(root).expanduser().resolve()

    @registry.register(
        name="execute_command",
        description=(
            "Execute a shell command in the working directory and return its "
            "output (ls, cat, grep, find, test runners, ...). Prefer the "
            "dedicated file tools for reading and writing files."
        ),
        category="terminal",
        parameters={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute (e.g. 'ls -la', 'grep -r TODO .')",
                },
                "working_directory": {
                    "type": "string",
                    "description": "Directory to run in, relative to the working directory (default: .)",
                    "default": ".",
                },
            },
            "required": ["command"],
        },
    )
    async def execute_command(command: str, working_directory: str = ".") -> str:
        if is_dangerous(command):
            log.warning("terminal.command_rejected", command=command[:200])
            raise ToolError("Command rejected for safety reasons")

        cwd = resolve_within(base, working_directory)
        if not cwd.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {working_directory}")

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env={**_safe_env(), "PYTHONUNBUFFERED": "1"},
        )
        try:
            stdout_bytes, stderr_bytes = await proc.communicate()
        except asyncio.CancelledError:
            # The executor's timeout cancels us; don't leave the child running.
            proc.kill()
            await proc.wait()
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        output = stdout + (f"\nSTDERR:\n{stderr}" if stderr else "")

        log.info("terminal.command_done", command=command[:200], exit_code=proc.returncode)
        if proc.returncode != 0:
            raise ToolError(f"Command exited with status {proc.returncode}\n{output}".rstrip())
        return output or "Command executed successfully (no output)"
