"""Delegation tool schemas offered to the model provider.

Agents delegate by calling ``delegate_task`` (generic, target in the args)
or ``delegate_to_<agent_id>`` (one tool per target). The tools node
intercepts these calls and hands them to the delegation coordinator.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from agentOrchestrator.agents.schema import AgentConfig, AgentRole

DELEGATE_TASK_TOOL = "delegate_task"
DELEGATE_TO_PREFIX = "delegate_to_"

_TASK_PARAMETERS = {
    "task": {"type": "string", "description": "What the target agent should do"},
    "context": {"type": "string", "description": "Background the target agent needs"},
    "priority": {"type": "string", "enum": ["low", "normal", "high"]},
}


def is_delegation_tool(tool_name: str) -> bool:
    return tool_name == DELEGATE_TASK_TOOL or tool_name.startswith(DELEGATE_TO_PREFIX)


def tool_suffix(agent_id: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", agent_id)


def delegation_tool_name(agent_id: str) -> str:
    return f"{DELEGATE_TO_PREFIX}{tool_suffix(agent_id)}"


def parse_delegation_call(tool_name: str, args: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """Return (target agent id, normalized args) for a delegation tool call."""
    args = dict(args or {})
    if tool_name == DELEGATE_TASK_TOOL:
        target = args.pop("agent_id", None) or args.pop("target_agent", None) or args.pop("agent", None)
    else:
        target = tool_name[len(DELEGATE_TO_PREFIX):]
    return target, {
        "task": str(args.get("task") or args.get("description") or ""),
        "context": str(args.get("context") or ""),
        "priority": args.get("priority", "normal"),
    }


def delegation_targets(agent: AgentConfig, registry) -> List[AgentConfig]:
    """Agents ``agent`` may delegate to: its sub-agents, plus every other
    top-level agent when it is a supervisor."""
    targets = [sub.config for sub in registry.get_sub_agents(agent.id)]
    if agent.role == AgentRole.SUPERVISOR:
        targets.extend(
            other for other in registry.list_agents(include_sub_agents=False)
            if other.id != agent.id and other.role != AgentRole.SUPERVISOR
        )
    return targets


def build_delegation_tool_specs(agent: AgentConfig, registry) -> List[Dict[str, Any]]:
    """JSON-schema tool specs for the model provider."""
    targets = delegation_targets(agent, registry)
    if not targets:
        return []

    specs = [{
        "name": DELEGATE_TASK_TOOL,
        "description": "Delegate a task to another agent and wait for its answer.",
        "parameters": {
            "type": "object",
            "properties": {
                "agent_id": {"type": "string", "enum": [t.id for t in targets]},
                **_TASK_PARAMETERS,
            },
            "required": ["agent_id", "task"],
        },
    }]
    for target in targets:
        specs.append({
            "name": delegation_tool_name(target.id),
            "description": f"Delegate a task to {target.name}.",
            "parameters": {
                "type": "object",
                "properties": dict(_TASK_PARAMETERS),
                "required": ["task"],
            },
        })
    return specs
