"""Runtime assembly exports."""

from .app import build_orchestrator
from .orchestrator import AgentOrchestrator

__all__ = ["AgentOrchestrator", "build_orchestrator"]
