"""Agent configuration, registry and collaborator interfaces."""

from .interfaces import AgentRegistryProtocol, CheckpointStore, InterruptStore, ModelProvider, ToolRuntime
from .registry import InMemoryAgentRegistry
from .schema import AgentConfig, AgentRole, SubAgent

__all__ = [
    "AgentConfig",
    "AgentRegistryProtocol",
    "AgentRole",
    "CheckpointStore",
    "InMemoryAgentRegistry",
    "InterruptStore",
    "ModelProvider",
    "SubAgent",
    "ToolRuntime",
]
