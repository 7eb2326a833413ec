"""Assembly of the agent graph.

START → agent ─┬─> approval → tools → agent
               └─> END
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.execution.events import NODE_COMPLETED, NODE_ENTERED, EventEmitter
from agentOrchestrator.hitl.approval_checker import ApprovalChecker
from agentOrchestrator.hitl.approval_node import ApprovalNode
from agentOrchestrator.utils.logging_utils import log_node_entry
from agentOrchestrator.utils.resilience import AgentErrorHandler

from .nodes.agent import build_agent_node
from .nodes.tools import DelegationHandler, build_tools_node
from .routing import agent_route
from .state import AgentState

LOGGER = logging.getLogger(__name__)


def with_node_events(node_name: str, func: Callable, events: Optional[EventEmitter]):
    """Wrap a node so it emits node.entered / node.completed for its execution.

    A node that suspends on an interrupt emits no node.completed; it emits
    node.entered again when it is re-run on resume.
    """

    @functools.wraps(func)
    async def wrapper(state: AgentState, config: RunnableConfig) -> AgentState:
        execution_id = (config.get("configurable") or {}).get("execution_id")
        log_node_entry(LOGGER, node_name, state, execution_id)
        payload: Dict[str, Any] = {
            "execution_id": execution_id,
            "agent_id": state.get("agent_id"),
            "node": node_name,
            "loops": state.get("loops", 0),
        }
        if events is not None:
            events.emit(NODE_ENTERED, payload)

        result = await func(state, config)

        if events is not None:
            produced = (result or {}).get("messages") or []
            last = produced[-1] if produced else None
            events.emit(NODE_COMPLETED, {
                **payload,
                "has_tool_calls": bool(isinstance(last, AIMessage) and last.tool_calls),
                "message_count": len(produced),
            })
        return result

    return wrapper


def build_agent_graph(
    agent: AgentConfig,
    *,
    model_provider,
    tool_runtime=None,
    approval_checker: Optional[ApprovalChecker] = None,
    delegation_handler: Optional[DelegationHandler] = None,
    error_handler: Optional[AgentErrorHandler] = None,
    events: Optional[EventEmitter] = None,
    checkpointer=None,
    tool_specs: Optional[List[Dict[str, Any]]] = None,
    tool_timeout_s: float = 60.0,
):
    """Compile the executable graph for one agent.

    Args:
        agent: Agent configuration
        model_provider: Model provider used by the agent node
        tool_runtime: Tool runtime used by the tools node
        approval_checker: Rules deciding which calls need human approval
        delegation_handler: Coroutine receiving DelegationRequest objects
        error_handler: Retry / circuit breaker wrapper for model and tool calls
        events: Receives node.entered / node.completed
        checkpointer: LangGraph checkpointer, required for interrupt/resume
        tool_specs: Tool specs advertised to the model (delegation tools included)
        tool_timeout_s: Per tool call timeout

    Returns:
        Compiled graph
    """
    agent_node = build_agent_node(
        agent,
        model_provider=model_provider,
        error_handler=error_handler,
        tool_specs=tool_specs,
    )
    approval_node = ApprovalNode(agent, approval_checker)
    tools_node = build_tools_node(
        agent,
        tool_runtime=tool_runtime,
        delegation_handler=delegation_handler,
        error_handler=error_handler,
        tool_timeout_s=tool_timeout_s,
    )

    graph = StateGraph(AgentState)
    graph.add_node("agent", with_node_events("agent", agent_node, events))
    graph.add_node("approval", with_node_events("approval", approval_node.__call__, events))
    graph.add_node("tools", with_node_events("tools", tools_node, events))

    graph.add_edge(START, "agent")
    graph.add_conditional_edges(
        "agent",
        agent_route,
        {
            "approval": "approval",
            "end": END,
        },
    )
    graph.add_edge("approval", "tools")
    graph.add_edge("tools", "agent")

    compiled = graph.compile(checkpointer=checkpointer)
    LOGGER.info(f"Compiled graph for agent {agent.id} ({len(agent.tools)} tools)")
    return compiled
