"""
tools/executor.py — Tool Executor

The dispatcher between the execution loop and tool handlers. Every task that
names a tool is routed through here.

Flow:
  ToolExecutor.execute(name, input)
    → Registry lookup (is the tool registered and enabled?)
    → Parameter validation (required fields, JSON schema types)
    → Handler execution (async, with timeout)
    → ToolResult (success or error)

execute() never raises: unknown tools, bad arguments, handler exceptions and
timeouts all come back as ToolResult(is_error=True). A handler signals failure
only by raising; whatever it returns is a successful result. ToolError
messages are reported as-is, other exceptions with their type name.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional

from kitty.exceptions import ToolError
from kitty.observability.logger import get_logger
from kitty.tools.tool_registry import ToolRegistry
from kitty.tools.types import ToolResult

log = get_logger(__name__)

# Max output size fed back to the model; truncate beyond this
MAX_RESULT_CHARS = 20_000

DEFAULT_TIMEOUT_SECONDS = 30.0

_JSON_TYPE_MAP: dict[str, type | tuple] = {
    "string":  str,
    "integer": int,
    "number":  (int, float),
    "boolean": bool,
    "array":   list,
    "object":  dict,
}


class ToolExecutor:
    """
    Runs registered tools on behalf of the execution loop.

    Usage:
        executor = ToolExecutor(registry, timeout_seconds=30)
        result = await executor.execute("read_file", {"path": "notes.txt"})
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_result_chars: int = MAX_RESULT_CHARS,
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_result_chars = max_result_chars

    async def execute(self, tool_name: str, tool_input: Optional[dict[str, Any]] = None) -> ToolResult:
        start_ms = time.monotonic() * 1000
        arguments = tool_input if tool_input is not None else {}

        log.info("tool_executor.dispatch", tool=tool_name)

        # ── Step 1: Registry lookup ───────────────────────────────────────────
        schema = self.registry.get_schema(tool_name)
        if schema is None or not schema.enabled:
            return ToolResult.error(
                tool_name,
                f"Unknown tool '{tool_name}'. Available tools: {self.registry.list_names()}",
            )

        handler = self.registry.get_handler(tool_name)
        if handler is None:
            return ToolResult.error(tool_name, f"Tool '{tool_name}' has no handler registered.")

        # ── Step 2: Parameter validation ──────────────────────────────────────
        if not isinstance(arguments, dict):
            return ToolResult.error(
                tool_name,
                f"Invalid parameters: expected an object, got {type(arguments).__name__}",
            )
        validation_error = _validate_args(arguments, schema.parameters)
        if validation_error:
            return ToolResult.error(tool_name, f"Invalid parameters: {validation_error}")

        # ── Step 3: Execute with timeout ──────────────────────────────────────
        try:
            raw_result = await asyncio.wait_for(
                handler(**arguments),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            duration_ms = time.monotonic() * 1000 - start_ms
            log.error(
                "tool_executor.timeout",
                tool=tool_name,
                timeout_seconds=self.timeout_seconds,
                duration_ms=duration_ms,
            )
            return ToolResult.error(
                tool_name,
                f"Tool '{tool_name}' timed out after {self.timeout_seconds}s",
            )
        except ToolError as e:
            log.info(
                "tool_executor.tool_error",
                tool=tool_name,
                error=str(e),
                duration_ms=round(time.monotonic() * 1000 - start_ms, 1),
            )
            return ToolResult.error(tool_name, _truncate(str(e), self.max_result_chars))
        except Exception as e:
            duration_ms = time.monotonic() * 1000 - start_ms
            log.error(
                "tool_executor.execution_error",
                tool=tool_name,
                error=str(e),
                duration_ms=duration_ms,
                exc_info=True,
            )
            return ToolResult.error(tool_name, f"Tool execution failed: {type(e).__name__}: {e}")

        # ── Step 4: Normalise and truncate result ─────────────────────────────
        duration_ms = time.monotonic() * 1000 - start_ms
        content = _truncate(_normalise_result(raw_result), self.max_result_chars)

        log.info(
            "tool_executor.success",
            tool=tool_name,
            duration_ms=round(duration_ms, 1),
            result_chars=len(content),
        )
        return ToolResult.success(tool_name, content, duration_ms=duration_ms)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _validate_args(arguments: dict, schema: dict) -> Optional[str]:
    """
    Validate tool arguments against the JSON schema.
    Returns an error string if invalid, None if valid.

    Checks:
      1. All required fields are present.
      2. Provided values match the declared JSON Schema types.
    """
    required = schema.get("required", [])
    properties = schema.get("properties", {})

    for field in required:
        if field not in arguments:
            return f"Missing required field: '{field}'"

    for field, value in arguments.items():
        prop_schema = properties.get(field)
        if prop_schema is None:
            continue  # the handler decides
        json_type = prop_schema.get("type")
        expected = _JSON_TYPE_MAP.get(json_type) if json_type else None
        if expected is None:
            continue
        # bool is a subclass of int in Python
        if json_type in ("integer", "number") and isinstance(value, bool):
            return f"Field '{field}': expected {json_type}, got boolean"
        if not isinstance(value, expected):
            return f"Field '{field}': expected {json_type}, got {type(value).__name__}"

    return None


def _normalise_result(result) -> str:
    """Convert any tool return value to a string."""
    if result is None:
        return "Done."
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError):
            return str(result)
    return str(result)


def _truncate(text: str, max_chars: int) -> str:
    """Truncate result if too long, with a notice."""
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated: {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )
