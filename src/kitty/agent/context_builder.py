"""
agent/context_builder.py — Response System Prompt Builder

Assembles the system prompt used for direct answers and final syntheses:

    session system prompt (optional) → base prompt → project context (KITTY.md)

KITTY.md is a project's standing instructions for the assistant. It is read
once from the working directory at Agent.initialize() and appended to every
response prompt as authoritative rules.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from kitty.observability.logger import get_logger

log = get_logger(__name__)

PROJECT_CONTEXT_FILE = "KITTY.md"

_BASE_TEMPLATE = """\
You are {agent_name}, a terminal assistant working in the user's project directory.

## Guidelines
- Answer clearly and concisely; use markdown where it aids readability.
- When tool results are provided, base your answer on them and report
  failures honestly. Never fabricate file contents or results.
- Ask for clarification rather than guessing when the request is ambiguous.

## Current UTC Time
{utc_time}"""

_PROJECT_TEMPLATE = """

## PROJECT CONTEXT (from {filename})

You are working in a project with the following established rules and context.
Treat them as authoritative for this entire session; every request must be
handled within them.

{content}

---

Follow the {filename} guidelines strictly."""


@dataclass
class ProjectContext:
    working_dir: Path
    content: Optional[str] = None

    @property
    def has_context(self) -> bool:
        return bool(self.content and self.content.strip())


def load_project_context(working_dir: str | Path) -> ProjectContext:
    """Read KITTY.md from `working_dir` if it exists."""
    root = Path(working_dir)
    path = root / PROJECT_CONTEXT_FILE
    if not path.is_file():
        return ProjectContext(working_dir=root)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        log.warning("context_builder.project_context_unreadable", path=str(path), error=str(e))
        return ProjectContext(working_dir=root)
    log.info("context_builder.project_context_loaded", path=str(path), chars=len(content))
    return ProjectContext(working_dir=root, content=content)


class ContextBuilder:
    """Builds the response system prompt for the Agent."""

    def __init__(self, working_dir: str | Path = ".", agent_name: str = "Kitty"):
        self.working_dir = Path(working_dir)
        self.agent_name = agent_name
        self.project = ProjectContext(working_dir=self.working_dir)

    def load(self) -> ProjectContext:
        self.project = load_project_context(self.working_dir)
        return self.project

    def build_system_prompt(self, session_prompt: Optional[str] = None) -> str:
        base = _BASE_TEMPLATE.format(
            agent_name=self.agent_name,
            utc_time=time.strftime("%Y-%m-%d %H:%M UTC", time.gmtime()),
        )
        if session_prompt and session_prompt.strip():
            base = f"{session_prompt.strip()}\n\n{base}"
        if self.project.has_context:
            base += _PROJECT_TEMPLATE.format(
                filename=PROJECT_CONTEXT_FILE,
                content=self.project.content.strip(),
            )
        return base
