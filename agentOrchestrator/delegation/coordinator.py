"""Delegation coordinator: runs a task on another agent for a running execution.

A delegation never fails its source execution. Every outcome, including an
unknown target or a crashed child, comes back as a ``DelegationOutcome`` and
is announced with ``delegation.*`` events.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from agentOrchestrator.agents.schema import AgentConfig, AgentRole
from agentOrchestrator.config.settings import Settings, get_settings
from agentOrchestrator.execution.events import (
    DELEGATION_COMPLETED,
    DELEGATION_FAILED,
    DELEGATION_PROGRESS,
    DELEGATION_REQUESTED,
    EventEmitter,
)
from agentOrchestrator.execution.models import (
    Execution,
    ExecutionContext,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStep,
    StepAction,
    generate_delegation_thread_id,
    generate_execution_id,
)
from agentOrchestrator.execution.registry import ExecutionRegistry
from agentOrchestrator.execution.request_context import get_current_user_id
from agentOrchestrator.graph.message_utils import to_text
from agentOrchestrator.utils.error_handler import AgentNotFoundError, ExecutionCancelledError
from agentOrchestrator.utils.logging_utils import log_delegation

from .models import STAGES, DelegationOutcome, DelegationRequest, DelegationStage
from .tools import tool_suffix

LOGGER = logging.getLogger(__name__)

NIL_UUID = "00000000-0000-0000-0000-000000000000"

ExecuteAgentFn = Callable[[AgentConfig, ExecutionContext, ExecutionOptions], Awaitable[ExecutionResult]]


def is_valid_uuid(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    return str(parsed) == value.lower()


def resolve_user_id(*candidates: Optional[str]) -> str:
    """First well-formed UUID among ``candidates``, else the nil UUID."""
    for candidate in candidates:
        if is_valid_uuid(candidate):
            return candidate
    return NIL_UUID


class DelegationCoordinator:
    """委派协调器

    Args:
        agent_registry: Resolves target ids, aliases and sub-agents
        execution_registry: Where source executions are looked up
        events: Receives delegation.* events
        execute_agent_fn: Runs the child execution (``AgentOrchestrator.execute_agent``)
        delegations_seen: Source execution ids that requested a delegation;
            shared with the orchestrator
        settings: Timeouts and history window
    """

    def __init__(
        self,
        agent_registry,
        execution_registry: ExecutionRegistry,
        events: EventEmitter,
        execute_agent_fn: ExecuteAgentFn,
        delegations_seen: Optional[Set[str]] = None,
        settings: Optional[Settings] = None,
    ):
        self.agent_registry = agent_registry
        self.execution_registry = execution_registry
        self.events = events
        self.execute_agent_fn = execute_agent_fn
        self.delegations_seen = delegations_seen if delegations_seen is not None else set()
        self.settings = settings or get_settings()

    # ========== Target resolution ==========

    def resolve_target(self, source_agent: str, raw_target: str) -> Tuple[Optional[AgentConfig], bool]:
        """Find the target among the source's sub-agents first, then top-level agents.

        Returns:
            (agent config or None, whether it is a sub-agent)
        """
        canonical = self.agent_registry.resolve_canonical_id(raw_target)
        wanted = {canonical, raw_target.strip()}

        def matches(agent: AgentConfig) -> bool:
            return agent.id in wanted or tool_suffix(agent.id) in wanted

        for sub in self.agent_registry.get_sub_agents(source_agent):
            if sub.is_active and matches(sub.config):
                return sub.config, True

        agent = self.agent_registry.get_by_id(canonical)
        if agent is not None:
            return agent, agent.is_sub_agent

        list_agents = getattr(self.agent_registry, "list_agents", None)
        if list_agents is not None:
            for candidate in list_agents():
                if matches(candidate):
                    return candidate, candidate.is_sub_agent
        return None, False

    # ========== Delegation ==========

    async def handle_delegation(self, request: DelegationRequest) -> DelegationOutcome:
        """Run ``request`` on its target agent and report the outcome."""
        target, is_sub_agent = self.resolve_target(request.source_agent, request.target_agent)
        if target is None:
            error = AgentNotFoundError(request.target_agent)
            LOGGER.error(f"Delegation from {request.source_agent} failed: {error}")
            self.events.emit(DELEGATION_FAILED, {
                "sourceAgent": request.source_agent,
                "targetAgent": request.target_agent,
                "sourceExecutionId": request.source_execution_id,
                "error": str(error),
            })
            return DelegationOutcome(success=False, target_agent=request.target_agent, error=str(error))

        source = self.execution_registry.get(request.source_execution_id) if request.source_execution_id else None
        if request.source_execution_id:
            self.delegations_seen.add(request.source_execution_id)

        self.events.emit(DELEGATION_REQUESTED, {
            "sourceAgent": request.source_agent,
            "targetAgent": target.id,
            "sourceExecutionId": request.source_execution_id,
            "task": request.task,
            "priority": request.priority.value,
            "isSubAgent": is_sub_agent,
        })
        log_delegation(LOGGER, request.source_agent, target.id, "requested", request.task)

        try:
            self._progress(request, target, source, DelegationStage.INITIALIZING)
            context = self._child_context(request, target, source, is_sub_agent)
            self._progress(request, target, source, DelegationStage.ANALYZING)
            self._progress(request, target, source, DelegationStage.PROCESSING)
            self._progress(request, target, source, DelegationStage.RESEARCHING)

            result = await self.execute_agent_fn(target, context, ExecutionOptions(
                timeout_s=self._timeout_for(target, is_sub_agent),
                priority=request.priority.value,
            ))

            self._progress(request, target, source, DelegationStage.SYNTHESIZING)
            if source is not None:
                self._merge_result(source, request, target, result)
            self._progress(request, target, source, DelegationStage.FINALIZING)
            self._progress(request, target, source, DelegationStage.COMPLETED)
        except asyncio.CancelledError:
            self._fail(
                request, target, source,
                ExecutionCancelledError(f"Delegation to {target.id} was cancelled"),
                is_sub_agent,
            )
            raise
        except Exception as e:
            return self._fail(request, target, source, e, is_sub_agent)

        self.events.emit(DELEGATION_COMPLETED, {
            "sourceAgent": request.source_agent,
            "targetAgent": target.id,
            "sourceExecutionId": request.source_execution_id,
            "childExecutionId": context.metadata.get("executionId"),
            "result": result.content,
            "executionTime": result.execution_time_ms,
        })
        log_delegation(LOGGER, request.source_agent, target.id, "completed")
        return DelegationOutcome(
            success=True,
            target_agent=target.id,
            content=result.content,
            child_execution_id=context.metadata.get("executionId"),
            execution_time_ms=result.execution_time_ms,
            tokens_used=result.tokens_used,
            is_sub_agent=is_sub_agent,
        )

    def _timeout_for(self, target: AgentConfig, is_sub_agent: bool) -> float:
        runtime = self.settings.runtime
        if not is_sub_agent and target.role == AgentRole.SUPERVISOR:
            return runtime.supervisor_timeout_s
        return runtime.specialist_timeout_s

    def _child_context(
        self,
        request: DelegationRequest,
        target: AgentConfig,
        source: Optional[Execution],
        is_sub_agent: bool,
    ) -> ExecutionContext:
        user_id = resolve_user_id(
            request.user_id,
            source.user_id if source is not None else None,
            get_current_user_id(),
        )

        note = f"You have been delegated a task by {request.source_agent}."
        if request.context:
            note += f" Context: {request.context}"
        history: List[BaseMessage] = self._recent_history(request.history)
        history.append(SystemMessage(content=note))
        history.append(HumanMessage(content=request.task))

        return ExecutionContext(
            thread_id=generate_delegation_thread_id(),
            user_id=user_id,
            agent_id=target.id,
            message_history=history,
            metadata={
                "executionId": generate_execution_id(),
                "isDelegation": True,
                "sourceAgent": request.source_agent,
                "delegationPriority": request.priority.value,
                "isSubAgentDelegation": is_sub_agent,
                "parentExecutionId": request.source_execution_id,
                "rootExecutionId": source.root_execution_id if source is not None else request.source_execution_id,
            },
        )

    def _recent_history(self, messages) -> List[BaseMessage]:
        """Last few plain conversational turns; tool traffic is left behind."""
        window = self.settings.runtime.delegation_history_window
        plain = [
            m for m in messages
            if isinstance(m, HumanMessage)
            or (isinstance(m, AIMessage) and not m.tool_calls and to_text(m.content).strip())
        ]
        return [m.model_copy(update={"id": None}) for m in plain[-window:]] if window > 0 else []

    def _merge_result(
        self,
        source: Execution,
        request: DelegationRequest,
        target: AgentConfig,
        result: ExecutionResult,
    ) -> None:
        """Fold the child's answer and metrics into the source execution.

        The source stays running; its agent may delegate again.
        """
        source.messages.append(AIMessage(
            content=f"Task completed by {target.name}:\n\n{result.content}",
            additional_kwargs={
                "sender": target.id,
                "isDelegationResult": True,
                "sourceAgent": request.source_agent,
            },
        ))
        source.metrics.execution_time_ms += result.execution_time_ms
        source.metrics.tokens_used += result.tokens_used
        source.metrics.delegations_count += 1

    def _progress(
        self,
        request: DelegationRequest,
        target: AgentConfig,
        source: Optional[Execution],
        stage: DelegationStage,
    ) -> None:
        spec = STAGES[stage]
        content = spec.template.format(source=request.source_agent, target=target.name)
        metadata = {
            "sourceAgent": request.source_agent,
            "delegatedTo": target.id,
            "task": request.task,
            "status": spec.status,
            "stage": stage.value,
        }
        self._append_step(source, ExecutionStep(
            agent=target.id if stage is not DelegationStage.INITIALIZING else request.source_agent,
            action=StepAction.DELEGATING,
            content=content,
            progress=spec.progress,
            metadata=metadata,
        ))
        self.events.emit(DELEGATION_PROGRESS, {
            "sourceAgent": request.source_agent,
            "targetAgent": target.id,
            "sourceExecutionId": request.source_execution_id,
            "stage": stage.value,
            "status": spec.status,
            "message": content,
            "progress": spec.progress,
        })

    def _append_step(self, source: Optional[Execution], step: ExecutionStep) -> None:
        if source is None:
            return
        source.add_step(step)
        # Nested chains: show the grandchild's progress on the parent timeline too.
        if source.parent_execution_id:
            parent = self.execution_registry.get(source.parent_execution_id)
            if parent is not None and not parent.is_terminal:
                parent.add_step(ExecutionStep(
                    agent=step.agent,
                    action=step.action,
                    content=step.content,
                    progress=step.progress,
                    metadata={**step.metadata, "mirroredFrom": source.id},
                ))

    def _fail(
        self,
        request: DelegationRequest,
        target: AgentConfig,
        source: Optional[Execution],
        error: Exception,
        is_sub_agent: bool,
    ) -> DelegationOutcome:
        LOGGER.error(f"Delegation {request.source_agent} -> {target.id} failed: {error}")
        self._append_step(source, ExecutionStep(
            agent=target.id,
            action=StepAction.DELEGATING,
            content=f"{target.name} could not complete the task: {error}",
            progress=100,
            metadata={
                "sourceAgent": request.source_agent,
                "delegatedTo": target.id,
                "task": request.task,
                "status": "failed",
                "stage": DelegationStage.FAILED.value,
                "error": str(error),
            },
        ))
        self.events.emit(DELEGATION_FAILED, {
            "sourceAgent": request.source_agent,
            "targetAgent": target.id,
            "sourceExecutionId": request.source_execution_id,
            "error": str(error),
        })
        return DelegationOutcome(
            success=False,
            target_agent=target.id,
            error=str(error),
            is_sub_agent=is_sub_agent,
        )
