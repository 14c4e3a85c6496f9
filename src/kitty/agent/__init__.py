"""
agent/__init__.py — Kitty Agent

Public interface for the orchestration engine.

Usage:
    from kitty.agent import Agent

    agent = Agent.from_settings(settings, llm_client=client)
    await agent.initialize()
    async for event in agent.run_turn("explain this repo"):
        ...
"""

from kitty.agent.agent import Agent
from kitty.agent.decision import Decision, parse_decision
from kitty.agent.events import (
    AgentEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolResultEvent,
    ToolUseEvent,
    TurnCallbacks,
)
from kitty.agent.orchestrator import Orchestrator
from kitty.agent.task import Plan, PlanDecision, Reflection, Task, ThinkingKind, ThinkingStep

__all__ = [
    "Agent",
    "Orchestrator",
    "Decision",
    "parse_decision",
    "AgentEvent",
    "TextChunkEvent",
    "ThinkingEvent",
    "ToolResultEvent",
    "ToolUseEvent",
    "TurnCallbacks",
    "Plan",
    "PlanDecision",
    "Reflection",
    "Task",
    "ThinkingKind",
    "ThinkingStep",
]
