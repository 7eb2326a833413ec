"""Tests for agent configs and the in-memory agent registry."""

import pytest

from agentOrchestrator.agents.registry import InMemoryAgentRegistry
from agentOrchestrator.agents.schema import AgentConfig, AgentRole


@pytest.fixture
def registry():
    return InMemoryAgentRegistry([
        AgentConfig(id="supervisor", name="Supervisor", role=AgentRole.SUPERVISOR),
        AgentConfig(id="researcher", name="Researcher", aliases=["research-agent", "Research_V1"]),
        AgentConfig(id="writer", name="Writer"),
        AgentConfig(id="fact-checker", name="Fact Checker", parent_agent_id="researcher"),
    ])


class TestAgentConfig:
    def test_lists_become_tuples(self):
        agent = AgentConfig(id="a", name="A", tools=["x", "y"], role="worker")
        assert agent.tools == ("x", "y")
        assert agent.role is AgentRole.WORKER
        assert hash(agent)

    def test_sub_agent_flag(self):
        assert AgentConfig(id="a", name="A", parent_agent_id="p").is_sub_agent
        assert not AgentConfig(id="a", name="A").is_sub_agent


class TestInMemoryAgentRegistry:
    """测试 Agent 注册表"""

    def test_lookup_by_id(self, registry):
        assert registry.get_by_id("writer").name == "Writer"
        assert registry.get_by_id("missing") is None

    def test_canonical_id_resolution(self, registry):
        assert registry.resolve_canonical_id("research-agent") == "researcher"
        assert registry.resolve_canonical_id("  RESEARCH_v1 ") == "researcher"
        assert registry.resolve_canonical_id("Writer") == "writer"
        assert registry.resolve_canonical_id(" unknown ") == "unknown"

    def test_sub_agents(self, registry):
        subs = registry.get_sub_agents("researcher")
        assert [s.id for s in subs] == ["fact-checker"]
        assert subs[0].parent_agent_id == "researcher"
        assert subs[0].is_active
        assert registry.get_sub_agents("writer") == []

    def test_sub_agent_needs_known_parent(self, registry):
        with pytest.raises(ValueError, match="Parent agent not registered"):
            registry.register(AgentConfig(id="orphan", name="Orphan", parent_agent_id="ghost"))

    def test_sub_agents_cannot_nest(self, registry):
        with pytest.raises(ValueError, match="cannot be nested"):
            registry.register(AgentConfig(id="deep", name="Deep", parent_agent_id="fact-checker"))

    def test_list_agents_and_stats(self, registry):
        top_level = [a.id for a in registry.list_agents(include_sub_agents=False)]
        assert top_level == ["supervisor", "researcher", "writer"]
        assert registry.get_stats() == {"total": 4, "top_level": 3, "sub_agents": 1, "aliases": 6}

    def test_unregister_parent_drops_children(self, registry):
        assert registry.unregister("researcher")
        assert registry.get_by_id("fact-checker") is None
        assert registry.resolve_canonical_id("research-agent") == "research-agent"
        assert not registry.unregister("researcher")
