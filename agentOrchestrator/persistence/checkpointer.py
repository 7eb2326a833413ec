"""Checkpointer for LangGraph state persistence.

Required for HITL interrupt support: a graph can only be resumed with
``Command(resume=...)`` when it was compiled with a checkpointer.
"""

from __future__ import annotations

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver


def build_checkpointer() -> BaseCheckpointSaver:
    """Build the LangGraph checkpointer shared by every compiled graph.

    Returns:
        MemorySaver instance (session-scoped). A persistent saver can be
        passed to ``build_orchestrator`` instead.
    """
    return MemorySaver()
