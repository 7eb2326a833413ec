"""Graph nodes exports."""

from .agent import build_agent_node
from .tools import build_tools_node

__all__ = [
    "build_agent_node",
    "build_tools_node",
]
