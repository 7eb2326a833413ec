"""Tools node: fan-out execution of the last assistant turn's tool calls."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.runnables import RunnableConfig

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.delegation.models import DelegationOutcome, DelegationRequest
from agentOrchestrator.delegation.tools import is_delegation_tool, parse_delegation_call
from agentOrchestrator.graph.state import AgentState
from agentOrchestrator.utils.error_handler import ToolExecutionError
from agentOrchestrator.utils.logging_utils import log_tool_call, log_tool_result
from agentOrchestrator.utils.resilience import AgentErrorHandler

LOGGER = logging.getLogger(__name__)

DelegationHandler = Callable[[DelegationRequest], Awaitable[DelegationOutcome]]


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


def _last_tool_calls(state: AgentState) -> List[Dict[str, Any]]:
    messages = state.get("messages") or []
    if messages and isinstance(messages[-1], AIMessage):
        return list(messages[-1].tool_calls or [])
    return []


def build_tools_node(
    agent: AgentConfig,
    *,
    tool_runtime=None,
    delegation_handler: Optional[DelegationHandler] = None,
    error_handler: Optional[AgentErrorHandler] = None,
    tool_timeout_s: float = 60.0,
):
    """Build the tool execution node for ``agent``.

    Every requested call yields exactly one ToolMessage: the tool output,
    ``Error: ...`` on failure or timeout, or the rejection note recorded by
    the approval node. Delegation calls go to ``delegation_handler``.
    """
    allowed = set(agent.tools)

    async def run_tool(name: str, args: Dict[str, Any]) -> str:
        if tool_runtime is None:
            raise ToolExecutionError(f"No tool runtime configured for tool {name}")

        async def call() -> Any:
            try:
                return await asyncio.wait_for(tool_runtime.run(name, args), timeout=tool_timeout_s)
            except asyncio.TimeoutError:
                error = ToolExecutionError(f"Tool {name} timed out after {tool_timeout_s:g}s")
                error.retryable = False
                raise error from None

        if error_handler is not None:
            return _stringify(await error_handler.with_retry(call, f"tool_{name}"))
        return _stringify(await call())

    async def delegate(call: Dict[str, Any], execution_id: Optional[str], state: AgentState) -> str:
        if delegation_handler is None:
            raise ToolExecutionError(f"Delegation is not available to agent {agent.id}")

        target, args = parse_delegation_call(call["name"], call.get("args") or {})
        if not target:
            raise ToolExecutionError("Delegation call did not name a target agent")

        request = DelegationRequest(
            source_agent=agent.id,
            source_execution_id=execution_id,
            target_agent=target,
            task=args["task"],
            context=args["context"],
            priority=args["priority"],
            user_id=state.get("user_id"),
            history=state.get("messages") or (),
        )
        outcome = await delegation_handler(request)
        if not outcome.success:
            raise ToolExecutionError(f"Delegation to {target} failed: {outcome.error}")
        return outcome.content

    async def tools_node(state: AgentState, config: RunnableConfig) -> AgentState:
        calls = _last_tool_calls(state)
        if not calls:
            return {"tool_decisions": {}}

        decisions = state.get("tool_decisions") or {}
        execution_id = (config.get("configurable") or {}).get("execution_id")

        async def run_one(call: Dict[str, Any]) -> str:
            name = call["name"]
            if call.get("id") in decisions:
                return decisions[call["id"]]
            log_tool_call(LOGGER, name, call.get("args") or {})
            if is_delegation_tool(name):
                return await delegate(call, execution_id, state)
            if name not in allowed:
                raise ToolExecutionError(f"Tool {name} is not available to agent {agent.id}")
            return await run_tool(name, call.get("args") or {})

        results = await asyncio.gather(*(run_one(call) for call in calls), return_exceptions=True)

        messages = []
        for call, result in zip(calls, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                log_tool_result(LOGGER, call["name"], result, success=False)
                messages.append(ToolMessage(
                    content=f"Error: {result}",
                    tool_call_id=call["id"],
                    name=call["name"],
                    status="error",
                ))
            else:
                log_tool_result(LOGGER, call["name"], result)
                messages.append(ToolMessage(content=result, tool_call_id=call["id"], name=call["name"]))

        return {"messages": messages, "tool_decisions": {}}

    return tools_node
