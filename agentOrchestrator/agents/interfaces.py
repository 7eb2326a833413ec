"""Interfaces for the engine's external collaborators."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage

from .schema import AgentConfig, SubAgent


class ModelProvider(Protocol):
    """Generates a reply for a message list.

    May return plain text, an ``AIMessage`` (which can carry ``tool_calls``),
    or an async iterator of text deltas. Errors should keep status-code hints
    ("429", "timeout", ...) in their message so they classify correctly.
    """

    async def generate(
        self,
        model: str,
        messages: Sequence[BaseMessage],
        params: Dict[str, Any],
    ) -> Union[str, AIMessage, AsyncIterator[str]]:
        ...


class ToolRuntime(Protocol):
    """Executes a named tool; must raise on failure. Timeouts are enforced by the caller."""

    async def run(self, tool_name: str, args: Dict[str, Any]) -> Any:
        ...


class CheckpointStore(Protocol):
    """Checkpoint persistence keyed by (thread id, namespace, checkpoint id)."""

    async def get_tuple(self, thread_id: str, namespace: str = "", checkpoint_id: Optional[str] = None):
        ...

    async def put_tuple(self, thread_id: str, namespace: str, checkpoint, metadata: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def list(self, thread_id: str, namespace: str = "", before: Optional[str] = None, limit: Optional[int] = None) -> List:
        ...


class InterruptStore(Protocol):
    async def store(self, execution_id: str, thread_id: str, payload, user_id: Optional[str] = None, agent_id: Optional[str] = None):
        ...

    async def get(self, execution_id: str, force_refresh: bool = False):
        ...

    async def update_response(self, execution_id: str, response):
        ...

    async def clear(self, execution_id: str) -> bool:
        ...


class AgentRegistryProtocol(Protocol):
    def get_by_id(self, agent_id: str) -> Optional[AgentConfig]:
        ...

    def get_sub_agents(self, parent_id: str) -> List[SubAgent]:
        ...

    def resolve_canonical_id(self, raw_id: str) -> str:
        ...
