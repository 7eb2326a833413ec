"""Approval node gating tool calls behind human decisions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig
from langgraph.types import interrupt

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.delegation.tools import is_delegation_tool
from agentOrchestrator.graph.state import AgentState

from .approval_checker import ApprovalChecker, ApprovalDecision
from .interrupts import ActionRequest, HumanInterrupt, HumanInterruptConfig, coerce_response

LOGGER = logging.getLogger(__name__)


def build_interrupt_payload(agent: AgentConfig, call: Dict[str, Any], decision: ApprovalDecision) -> Dict[str, Any]:
    payload = HumanInterrupt(
        action_request=ActionRequest(action=call["name"], args=call.get("args") or {}),
        config=HumanInterruptConfig(allow_accept=True, allow_edit=True, allow_respond=True, allow_ignore=True),
        description=f"{agent.name} wants to run {call['name']}. {decision.reason}".strip(),
        metadata={
            "tool_call_id": call.get("id"),
            "agent_id": agent.id,
            "risk_level": decision.risk_level,
        },
    )
    return payload.model_dump()


class ApprovalNode:
    """审批节点

    Runs between the agent and tools nodes. For every tool call that needs
    approval it raises a LangGraph ``interrupt`` and applies the human
    response on resume:

    - accept: the call runs unchanged
    - edit: the call runs with the replacement args
    - ignore: the call is skipped with a cancellation note
    - response: the call is skipped and the human's text is returned instead
    """

    def __init__(self, agent: AgentConfig, approval_checker: Optional[ApprovalChecker] = None):
        self.agent = agent
        self.approval_checker = approval_checker

    def _decide(self, call: Dict[str, Any]) -> ApprovalDecision:
        if is_delegation_tool(call["name"]):
            return ApprovalDecision(needs_approval=False)
        if self.approval_checker is None:
            if call["name"] in self.agent.approval_required_tools:
                return ApprovalDecision(True, f"{call['name']} requires approval for this agent", "medium")
            return ApprovalDecision(needs_approval=False)
        return self.approval_checker.check(
            call["name"], call.get("args") or {}, self.agent.approval_required_tools
        )

    async def __call__(self, state: AgentState, config: RunnableConfig) -> AgentState:
        messages = state.get("messages") or []
        last = messages[-1] if messages else None
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return {"tool_decisions": {}}

        decisions: Dict[str, str] = {}
        updated_calls: List[Dict[str, Any]] = []
        edited = False

        for call in last.tool_calls:
            decision = self._decide(call)
            if not decision.needs_approval:
                updated_calls.append(call)
                continue

            LOGGER.info(f"Approval required for {call['name']} ({decision.risk_level}): {decision.reason}")
            raw_response: Any = interrupt(build_interrupt_payload(self.agent, call, decision))
            response = coerce_response(raw_response)

            if response.type == "edit" and isinstance(response.args, dict):
                updated_calls.append({**call, "args": response.args})
                edited = True
            elif response.type == "ignore":
                decisions[call["id"]] = f"Operation cancelled by user: {call['name']} was not executed."
                updated_calls.append(call)
            elif response.type == "response":
                decisions[call["id"]] = f"User responded instead of running {call['name']}: {response.args or ''}"
                updated_calls.append(call)
            else:
                updated_calls.append(call)

        update: AgentState = {"tool_decisions": decisions}
        if edited:
            # Same id, so add_messages replaces the turn in place.
            update["messages"] = [AIMessage(content=last.content, tool_calls=updated_calls, id=last.id)]
        return update
