"""
tools/__init__.py — Kitty Tool System

Public interface for the tool system.

Usage:
    from kitty.tools import ToolExecutor, ToolRegistry, register_filesystem_tools, register_terminal_tools

    registry = ToolRegistry()
    register_filesystem_tools(registry, root=".")
    register_terminal_tools(registry, root=".")
    executor = ToolExecutor(registry, timeout_seconds=30)

    result = await executor.execute("read_file", {"path": "README.md"})
"""

from __future__ import annotations

from kitty.tools.executor import ToolExecutor
from kitty.tools.filesystem import register_filesystem_tools
from kitty.tools.terminal import register_terminal_tools
from kitty.tools.tool_registry import ToolRegistry
from kitty.tools.types import ToolResult, ToolSchema

__all__ = [
    "ToolExecutor",
    "ToolRegistry",
    "register_filesystem_tools",
    "register_terminal_tools",
    "ToolResult",
    "ToolSchema",
]
