"""
tools/tool_registry.py — Tool Registry

Maps tool names to their schemas and async handlers. Built-in tools register
through the @registry.register() decorator; anything else can call
register_tool() directly.

Usage:
    registry = ToolRegistry()

    @registry.register(
        name="read_file",
        description="Read a file",
        category="filesystem",
        parameters={...}
    )
    async def read_file(path: str) -> str:
        ...

    schema = registry.get_schema("read_file")
    handler = registry.get_handler("read_file")
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Optional

from kitty.observability.logger import get_logger
from kitty.tools.types import ToolSchema

log = get_logger(__name__)


class ToolRegistry:
    """
    Registry that maps tool names to their schemas and async handlers.

    Safe for reads from a single event loop. Not designed for concurrent writes.
    """

    def __init__(self):
        self._schemas: dict[str, ToolSchema] = {}
        self._handlers: dict[str, Callable] = {}

    def register(
        self,
        name: str,
        description: str,
        category: str = "general",
        parameters: Optional[dict[str, Any]] = None,
        enabled: bool = True,
    ) -> Callable:
        """Decorator to register an async tool handler."""
        def decorator(fn: Callable) -> Callable:
            schema = ToolSchema(
                name=name,
                description=description,
                category=category,
                parameters=parameters or {
                    "type": "object",
                    "properties": {},
                    "required": [],
                },
                enabled=enabled,
            )
            self.register_tool(schema, fn)

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                return await fn(*args, **kwargs)

            return wrapper

        return decorator

    def register_tool(self, schema: ToolSchema, handler: Callable) -> None:
        """Programmatic registration (alternative to decorator)."""
        if schema.name in self._schemas:
            log.warning("tool.replaced", tool=schema.name)
        self._schemas[schema.name] = schema
        self._handlers[schema.name] = handler
        log.debug("tool.registered", tool=schema.name, category=schema.category)

    def get_schema(self, name: str) -> Optional[ToolSchema]:
        """Return the ToolSchema for a tool, or None if not found."""
        return self._schemas.get(name)

    def get_handler(self, name: str) -> Optional[Callable]:
        """Return the async handler function for a tool, or None if not found."""
        return self._handlers.get(name)

    def list_schemas(self, enabled_only: bool = True) -> list[ToolSchema]:
        """Return all registered tool schemas."""
        schemas = list(self._schemas.values())
        if enabled_only:
            schemas = [s for s in schemas if s.enabled]
        return schemas

    def list_names(self, enabled_only: bool = True) -> list[str]:
        """Return all registered tool names."""
        return [s.name for s in self.list_schemas(enabled_only)]

    def disable(self, name: str) -> None:
        if name in self._schemas:
            self._schemas[name].enabled = False

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={list(self._schemas.keys())}>"
