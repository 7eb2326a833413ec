"""Agent node: one model turn."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig
from langgraph.config import get_stream_writer

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.graph.message_utils import normalize_system_first
from agentOrchestrator.graph.state import AgentState
from agentOrchestrator.utils.error_handler import ModelInvocationError
from agentOrchestrator.utils.resilience import AgentErrorHandler

LOGGER = logging.getLogger(__name__)


async def _collect_stream(stream, agent_id: str) -> str:
    """Assemble token deltas while forwarding each one to the custom stream."""
    writer = get_stream_writer()
    parts: List[str] = []
    async for delta in stream:
        text = delta if isinstance(delta, str) else getattr(delta, "content", "") or ""
        if not text:
            continue
        parts.append(text)
        writer({"type": "token", "agent_id": agent_id, "content": text})
    return "".join(parts)


def _as_ai_message(output: Any) -> AIMessage:
    if isinstance(output, AIMessage):
        if not output.id:
            output = output.model_copy(update={"id": str(uuid4())})
        return output
    if isinstance(output, str):
        return AIMessage(content=output, id=str(uuid4()))
    raise ModelInvocationError(f"Unsupported model output type: {type(output).__name__}")


def build_agent_node(
    agent: AgentConfig,
    *,
    model_provider,
    error_handler: Optional[AgentErrorHandler] = None,
    tool_specs: Optional[List[Dict[str, Any]]] = None,
):
    """Build the model-calling node for ``agent``.

    Args:
        agent: Agent configuration (prompt, model, sampling parameters)
        model_provider: Object with ``async generate(model, messages, params)``
        error_handler: Wraps each model call with retry and circuit breaking
        tool_specs: Tool and delegation specs advertised to the model
    """
    tool_specs = list(tool_specs or [])
    params: Dict[str, Any] = {
        "temperature": agent.temperature,
        "max_tokens": agent.max_tokens,
        "streaming": True,
        "tools": tool_specs,
    }

    async def agent_node(state: AgentState, config: RunnableConfig) -> AgentState:
        prompt_messages = normalize_system_first(state.get("messages") or [], agent.system_prompt)

        async def call_model() -> AIMessage:
            output = await model_provider.generate(agent.model, prompt_messages, dict(params))
            if hasattr(output, "__aiter__"):
                output = await _collect_stream(output, agent.id)
            return _as_ai_message(output)

        if error_handler is not None:
            message = await error_handler.with_retry(call_model, f"model_{agent.id}")
        else:
            message = await call_model()

        LOGGER.info(
            f"{agent.id} turn {state.get('loops', 0) + 1}: "
            f"{len(message.tool_calls or [])} tool call(s), {len(str(message.content))} chars"
        )
        return {"messages": [message], "loops": state.get("loops", 0) + 1}

    return agent_node
