"""In-memory agent registry.

Backs the registry interface the delegation coordinator consumes:
lookup by id, sub-agents of a parent, and alias / legacy id normalization.
Persistent deployments plug in their own implementation of the same methods.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .schema import AgentConfig, SubAgent

LOGGER = logging.getLogger(__name__)


def _normalize(raw_id: str) -> str:
    return (raw_id or "").strip().lower()


class InMemoryAgentRegistry:
    """Agent 注册表

    - _agents: canonical id -> AgentConfig (top-level agents and sub-agents)
    - _aliases: normalized alias -> canonical id
    - _children: parent id -> ordered sub-agent ids
    """

    def __init__(self, agents: Iterable[AgentConfig] = ()):
        self._agents: Dict[str, AgentConfig] = {}
        self._aliases: Dict[str, str] = {}
        self._children: Dict[str, List[str]] = {}
        for agent in agents:
            self.register(agent)

    # ========== Registration ==========

    def register(self, agent: AgentConfig) -> AgentConfig:
        """Register an agent or sub-agent.

        Raises:
            ValueError: The sub-agent's parent is unknown or is itself a sub-agent
        """
        if agent.parent_agent_id is not None:
            parent = self._agents.get(self.resolve_canonical_id(agent.parent_agent_id))
            if parent is None:
                raise ValueError(f"Parent agent not registered: {agent.parent_agent_id}")
            if parent.is_sub_agent:
                raise ValueError(
                    f"Sub-agent {agent.id} cannot be nested under sub-agent {parent.id}"
                )
            children = self._children.setdefault(parent.id, [])
            if agent.id not in children:
                children.append(agent.id)

        self._agents[agent.id] = agent
        self._aliases[_normalize(agent.id)] = agent.id
        for alias in agent.aliases:
            self._aliases[_normalize(alias)] = agent.id
        LOGGER.debug(f"Registered agent: {agent.id} ({agent.name})")
        return agent

    def unregister(self, agent_id: str) -> bool:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        self._aliases = {k: v for k, v in self._aliases.items() if v != agent_id}
        if agent.parent_agent_id is not None:
            siblings = self._children.get(agent.parent_agent_id, [])
            if agent_id in siblings:
                siblings.remove(agent_id)
        for child_id in self._children.pop(agent_id, []):
            self._agents.pop(child_id, None)
        LOGGER.info(f"Unregistered agent: {agent_id}")
        return True

    def add_alias(self, alias: str, agent_id: str) -> None:
        self._aliases[_normalize(alias)] = agent_id

    # ========== Queries ==========

    def resolve_canonical_id(self, raw_id: str) -> str:
        """Map an alias or legacy id to its canonical id (unknown ids pass through stripped)."""
        return self._aliases.get(_normalize(raw_id), (raw_id or "").strip())

    def get_by_id(self, agent_id: str) -> Optional[AgentConfig]:
        return self._agents.get(agent_id)

    def get_sub_agents(self, parent_id: str) -> List[SubAgent]:
        return [
            SubAgent(config=self._agents[child_id], parent_agent_id=parent_id)
            for child_id in self._children.get(parent_id, [])
            if child_id in self._agents
        ]

    def list_agents(self, include_sub_agents: bool = True) -> List[AgentConfig]:
        if include_sub_agents:
            return list(self._agents.values())
        return [a for a in self._agents.values() if not a.is_sub_agent]

    def get_stats(self) -> Dict[str, int]:
        sub_agents = sum(1 for a in self._agents.values() if a.is_sub_agent)
        return {
            "total": len(self._agents),
            "top_level": len(self._agents) - sub_agents,
            "sub_agents": sub_agents,
            "aliases": len(self._aliases),
        }
