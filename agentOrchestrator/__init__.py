"""Multi-agent orchestration engine built on LangGraph."""

from agentOrchestrator.agents.schema import AgentConfig, AgentRole
from agentOrchestrator.execution.models import ExecutionContext, ExecutionOptions, ExecutionResult
from agentOrchestrator.runtime.app import build_orchestrator
from agentOrchestrator.runtime.orchestrator import AgentOrchestrator

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "AgentOrchestrator",
    "AgentRole",
    "ExecutionContext",
    "ExecutionOptions",
    "ExecutionResult",
    "build_orchestrator",
]
