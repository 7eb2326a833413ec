"""Conditional routing helpers for the agent loop."""

from __future__ import annotations

import logging
from typing import Literal

from agentOrchestrator.utils.logging_utils import log_routing_decision

from .state import AgentState

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_LOOPS = 25


def agent_route(state: AgentState) -> Literal["approval", "end"]:
    """Route after the agent node.

    Returns:
        "approval": The model requested tool calls and loops remain
        "end": No tool calls, or the loop limit was reached
    """
    loops = state.get("loops", 0)
    max_loops = state.get("max_loops", DEFAULT_MAX_LOOPS)

    messages = state.get("messages", [])
    last_message = messages[-1] if messages else None
    tool_calls = getattr(last_message, "tool_calls", None) or []

    if not tool_calls:
        decision, reason = "end", "No tool calls, agent finished"
    elif loops >= max_loops:
        decision, reason = "end", f"Loop limit reached ({loops}/{max_loops})"
    else:
        decision, reason = "approval", f"Agent requested {len(tool_calls)} tool call(s)"

    log_routing_decision(LOGGER, "agent", decision, reason)
    return decision
