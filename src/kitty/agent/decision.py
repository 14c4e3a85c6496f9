"""
agent/decision.py — Structured Decision Parsing

Every structured model reply (plan decision, plan, reflection) goes through
parse_decision(), which returns a Decision: either ok(value) or
failed(error). Callers pick a safe default on failure instead of catching
exceptions.

Parsing:
  1. strip markdown code fences
  2. parse the text as JSON, or else the outermost {...} span inside it
  3. require a JSON object
  4. hand it to the caller's validator, which builds the typed value or
     raises ValueError / TypeError / KeyError
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Decision(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Decision[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, error: str) -> "Decision[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.is_ok else default  # type: ignore[return-value]


def parse_decision(text: Optional[str], validator: Callable[[dict[str, Any]], T]) -> Decision[T]:
    body = _strip_fences(text or "")
    if not body:
        return Decision.failed("empty response")

    try:
        data = _load_object(body)
    except ValueError as e:
        return Decision.failed(f"invalid JSON: {e}")

    try:
        return Decision.ok(validator(data))
    except (ValueError, TypeError, KeyError) as e:
        return Decision.failed(f"unexpected shape: {e}")


def _load_object(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object found") from None
        try:
            data = json.loads(body[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(str(e)) from None

    if not isinstance(data, dict):
        raise ValueError(f"expected an object, got {type(data).__name__}")
    return data


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        end = len(lines) - 1 if len(lines) > 1 and lines[-1].strip() == "```" else len(lines)
        text = "\n".join(lines[1:end])
    return text.strip()
