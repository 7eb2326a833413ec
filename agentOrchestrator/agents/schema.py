"""Agent configuration schema.

Agent configurations are owned by an external registry; the engine only reads
them. A sub-agent is an agent with ``parent_agent_id`` set, scoped under
exactly one top-level parent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class AgentRole(str, Enum):
    """Agent 角色"""
    SUPERVISOR = "supervisor"
    SPECIALIST = "specialist"
    WORKER = "worker"


@dataclass(frozen=True)
class AgentConfig:
    """Read-only agent persona.

    Attributes:
        id: Canonical agent id
        name: Display name used in step content
        role: Supervisor, specialist or worker
        model: Model identifier handed to the model provider
        temperature: Sampling temperature
        max_tokens: Generation ceiling
        tools: Allowed tool names
        system_prompt: Prompt placed first in the message list
        parent_agent_id: Set for sub-agents only
        approval_required_tools: Tool names that always need human approval
        aliases: Legacy ids that resolve to this agent
    """

    id: str
    name: str
    role: AgentRole = AgentRole.SPECIALIST
    model: str = "default"
    temperature: float = 0.7
    max_tokens: int = 4096
    tools: Tuple[str, ...] = field(default_factory=tuple)
    system_prompt: str = ""
    parent_agent_id: Optional[str] = None
    approval_required_tools: Tuple[str, ...] = field(default_factory=tuple)
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept lists from callers while keeping the config hashable.
        object.__setattr__(self, "role", AgentRole(self.role))
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "approval_required_tools", tuple(self.approval_required_tools))
        object.__setattr__(self, "aliases", tuple(self.aliases))

    @property
    def is_sub_agent(self) -> bool:
        return self.parent_agent_id is not None


@dataclass(frozen=True)
class SubAgent:
    """A sub-agent entry as listed under its parent."""

    config: AgentConfig
    parent_agent_id: str
    is_active: bool = True

    @property
    def id(self) -> str:
        return self.config.id
