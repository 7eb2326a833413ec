"""Graph assembly exports."""

from .builder import build_agent_graph, with_node_events
from .cache import GraphCache, GraphCacheStats
from .state import AgentState

__all__ = ["build_agent_graph", "with_node_events", "GraphCache", "GraphCacheStats", "AgentState"]
