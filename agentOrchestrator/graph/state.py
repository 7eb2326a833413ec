"""Shared state definition for the agent graph."""

from __future__ import annotations

from typing import Annotated, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage
from langgraph.graph import add_messages


class AgentState(TypedDict, total=False):
    """State tracked across one agent graph run.

    agent ⇄ approval → tools loop; the tools node also hosts delegation calls.
    """

    # ========== Messages ==========
    messages: Annotated[List[BaseMessage], add_messages]

    # ========== Execution control ==========
    loops: int          # Completed agent turns
    max_loops: int      # Hard limit on agent turns

    # ========== Approval ==========
    tool_decisions: Dict[str, str]  # tool_call_id -> rejection note for calls a human declined

    # ========== Session context ==========
    agent_id: str
    thread_id: Optional[str]
    user_id: Optional[str]
