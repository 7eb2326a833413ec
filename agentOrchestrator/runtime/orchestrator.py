"""Agent orchestrator: the public entry point for running agents.

Owns the execution lifecycle (running → completed | failed | cancelled),
compiles graphs through the cache, wires delegation back into itself, and
turns node events into UI polling steps.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from agentOrchestrator.agents.interfaces import AgentRegistryProtocol, InterruptStore, ModelProvider, ToolRuntime
from agentOrchestrator.agents.schema import AgentConfig, AgentRole
from agentOrchestrator.config.settings import Settings, get_settings
from agentOrchestrator.delegation.coordinator import DelegationCoordinator
from agentOrchestrator.delegation.tools import build_delegation_tool_specs
from agentOrchestrator.execution.engine import ExecutionEngine
from agentOrchestrator.execution.events import (
    DELEGATION_SKIPPED,
    EXECUTION_CANCELLED,
    EXECUTION_COMPLETED,
    EXECUTION_FAILED,
    EXECUTION_STARTED,
    NODE_COMPLETED,
    NODE_ENTERED,
    EventEmitter,
    Listener,
)
from agentOrchestrator.execution.models import (
    Execution,
    ExecutionContext,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    StepAction,
    generate_execution_id,
)
from agentOrchestrator.execution.registry import ExecutionRegistry
from agentOrchestrator.execution.request_context import request_scope
from agentOrchestrator.graph.builder import build_agent_graph
from agentOrchestrator.graph.cache import GraphCache
from agentOrchestrator.graph.message_utils import last_human_text
from agentOrchestrator.persistence.checkpoint_store import InMemoryCheckpointStore
from agentOrchestrator.persistence.checkpointer import build_checkpointer
from agentOrchestrator.persistence.interrupt_store import InMemoryInterruptStore
from agentOrchestrator.utils.error_handler import ExecutionCancelledError
from agentOrchestrator.utils.resilience import AgentErrorHandler, CircuitBreaker, RetryConfig

LOGGER = logging.getLogger(__name__)


class AgentOrchestrator:
    """Runs agents, supervises delegation and tracks executions.

    Args:
        agent_registry: Agent lookup (by id, sub-agents, aliases)
        model_provider: Model provider handed to every compiled graph
        tool_runtime: Tool runtime handed to every compiled graph
        settings: Application settings
        events: Event bus; a private one is created when omitted
        execution_registry: Active / recently finished executions
        graph_cache: Compiled graph cache
        error_handler: Retry and circuit breaker layer
        interrupt_store: Pending approvals
        checkpointer: LangGraph saver every graph is compiled with
        approval_checker: Rules deciding which tool calls need approval
    """

    def __init__(
        self,
        agent_registry: AgentRegistryProtocol,
        model_provider: ModelProvider,
        tool_runtime: Optional[ToolRuntime] = None,
        *,
        settings: Optional[Settings] = None,
        events: Optional[EventEmitter] = None,
        execution_registry: Optional[ExecutionRegistry] = None,
        graph_cache: Optional[GraphCache] = None,
        error_handler: Optional[AgentErrorHandler] = None,
        interrupt_store: Optional[InterruptStore] = None,
        checkpointer=None,
        approval_checker=None,
    ):
        self.settings = settings or get_settings()
        self.agent_registry = agent_registry
        self.model_provider = model_provider
        self.tool_runtime = tool_runtime
        self.approval_checker = approval_checker
        self.events = events or EventEmitter()
        self.execution_registry = execution_registry or ExecutionRegistry()
        self.graph_cache = graph_cache or GraphCache()
        self.error_handler = error_handler or AgentErrorHandler(
            retry_config=RetryConfig.from_settings(self.settings.retry),
            circuit_breaker=CircuitBreaker(
                threshold=self.settings.circuit_breaker.failure_threshold,
                reset_timeout_ms=self.settings.circuit_breaker.reset_timeout_ms,
            ),
        )
        self.interrupt_store = interrupt_store or InMemoryInterruptStore()
        self.checkpointer = checkpointer or build_checkpointer()
        self.checkpoint_store = InMemoryCheckpointStore(self.checkpointer)

        self.delegations_seen: Set[str] = set()
        self.engine = ExecutionEngine(self.interrupt_store, self.error_handler, self.settings)
        self.delegation = DelegationCoordinator(
            agent_registry,
            self.execution_registry,
            self.events,
            self.execute_agent,
            delegations_seen=self.delegations_seen,
            settings=self.settings,
        )
        self._attach_node_listeners()

    # ========== Graphs ==========

    def _tool_specs(self, agent: AgentConfig) -> List[Dict[str, Any]]:
        specs = [{"name": name} for name in agent.tools]
        specs.extend(build_delegation_tool_specs(agent, self.agent_registry))
        return specs

    def compile_graph(self, agent: AgentConfig):
        return build_agent_graph(
            agent,
            model_provider=self.model_provider,
            tool_runtime=self.tool_runtime,
            approval_checker=self.approval_checker,
            delegation_handler=self.delegation.handle_delegation,
            error_handler=self.error_handler,
            events=self.events,
            checkpointer=self.checkpointer,
            tool_specs=self._tool_specs(agent),
            tool_timeout_s=self.settings.runtime.tool_timeout_s,
        )

    def is_supervisor(self, agent: AgentConfig) -> bool:
        return agent.id == self.settings.runtime.supervisor_agent_id or agent.role == AgentRole.SUPERVISOR

    # ========== Execution ==========

    async def execute_agent(
        self,
        agent: AgentConfig,
        context: ExecutionContext,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """Run ``agent`` on ``context`` and return its final result.

        Supervisors go through the routing path: they may delegate, and a run
        without any delegation is recorded as handled directly.

        Raises:
            Exception: Whatever failed the execution, after it was recorded
                as failed and ``execution.failed`` was emitted
        """
        options = options or ExecutionOptions()
        supervisor = self.is_supervisor(agent)
        if options.timeout_s is None:
            runtime = self.settings.runtime
            options = dataclasses.replace(
                options,
                timeout_s=runtime.supervisor_timeout_s if supervisor else runtime.execution_timeout_s,
            )

        metadata = dict(context.metadata or {})
        execution = self.execution_registry.add(Execution(
            id=metadata.get("executionId") or generate_execution_id(),
            agent_id=agent.id,
            thread_id=context.thread_id,
            user_id=context.user_id,
            input=last_human_text(context.message_history),
            parent_execution_id=metadata.get("parentExecutionId"),
            root_execution_id=metadata.get("rootExecutionId"),
            metadata=metadata,
        ))
        mode = "supervisor" if supervisor else "direct"
        execution.add_step(ExecutionStep(
            agent=agent.id,
            action=StepAction.ROUTING,
            content=f"Core execution started ({agent.id})",
            progress=0,
            metadata={"mode": mode},
        ))
        LOGGER.info(f"Execution {execution.id} started: {agent.id} ({mode})")
        self.events.emit(EXECUTION_STARTED, execution)

        with request_scope(execution.user_id, execution.id):
            try:
                graph = await self.graph_cache.get_or_compile(agent.id, lambda: self.compile_graph(agent))
                if supervisor:
                    result = await self._execute_with_routing(agent, graph, context, execution, options)
                else:
                    result = await self.error_handler.with_retry(
                        lambda: self.engine.run(agent, graph, context, execution, options),
                        f"agent_execution_{agent.id}",
                    )
                if execution.status is ExecutionStatus.CANCELLED:
                    raise ExecutionCancelledError(f"Execution {execution.id} was cancelled")
            except asyncio.CancelledError:
                # The awaiting task went away, e.g. a parent run timed out mid-delegation.
                await self._mark_cancelled(execution)
                raise
            except Exception as e:
                self._fail(execution, e)
                raise
            finally:
                self.delegations_seen.discard(execution.id)
                execution.metrics.retry_count += self.error_handler.take_retry_count(execution.id)

        execution.result = result.content
        execution.set_status(ExecutionStatus.COMPLETED)
        execution.mark_ended()
        LOGGER.info(f"Execution {execution.id} completed in {execution.metrics.execution_time_ms:.0f}ms")
        self.events.emit(EXECUTION_COMPLETED, execution)
        self.execution_registry.schedule_eviction(execution.id, self.settings.runtime.registry_grace_s)
        return result

    async def _execute_with_routing(
        self,
        agent: AgentConfig,
        graph,
        context: ExecutionContext,
        execution: Execution,
        options: ExecutionOptions,
    ) -> ExecutionResult:
        """Supervisor run; records a "handled directly" step when nothing was delegated."""
        result = await self.error_handler.with_retry(
            lambda: self.engine.run(agent, graph, context, execution, options),
            execution.id,
        )
        if execution.id not in self.delegations_seen:
            execution.add_step(ExecutionStep(
                agent=agent.id,
                action=StepAction.DELEGATING,
                content=f"{agent.name} handled directly (no delegation)",
                progress=100,
                metadata={"status": "skipped", "stage": "decision", "reason": "direct_or_clarify"},
            ))
            self.events.emit(DELEGATION_SKIPPED, {
                "executionId": execution.id,
                "agentId": agent.id,
                "reason": "direct_or_clarify",
            })
        return result

    def _fail(self, execution: Execution, error: Exception) -> None:
        if execution.status is ExecutionStatus.CANCELLED:
            LOGGER.info(f"Execution {execution.id} stopped after cancellation")
            return
        if not execution.is_terminal:
            self.error_handler.handle_execution_error(execution, error)
        self.events.emit(EXECUTION_FAILED, execution)
        self.execution_registry.schedule_eviction(execution.id, self.settings.runtime.registry_grace_s)

    async def cancel_execution(self, execution_id: str) -> bool:
        """Cancel a running execution.

        Cooperative: in-flight model and tool calls are not aborted; the run
        stops at its next stream event and its result is discarded.

        Returns:
            False if the execution is unknown or no longer running
        """
        execution = self.execution_registry.get(execution_id)
        if execution is None:
            return False
        return await self._mark_cancelled(execution)

    async def _mark_cancelled(self, execution: Execution) -> bool:
        if not execution.set_status(ExecutionStatus.CANCELLED):
            return False
        execution.mark_ended()
        self.execution_registry.pop(execution.id)
        # Wakes an engine polling for an approval that will never matter now.
        await self.interrupt_store.clear(execution.id)
        LOGGER.info(f"Execution {execution.id} cancelled")
        self.events.emit(EXECUTION_CANCELLED, execution)
        return True

    async def shutdown(self) -> None:
        """Cancel active executions and drop every cache and listener."""
        active = self.execution_registry.list_active()
        for execution in active:
            await self.cancel_execution(execution.id)
        await self.engine.close()
        self.graph_cache.clear()
        self.execution_registry.clear()
        self.delegations_seen.clear()
        self.error_handler.reset_metrics()
        self.events.remove_all_listeners()
        LOGGER.info(f"Orchestrator shut down ({len(active)} execution(s) cancelled)")

    # ========== Queries ==========

    def get_execution_status(self, execution_id: str) -> Optional[Execution]:
        return self.execution_registry.get(execution_id)

    def get_active_executions(self) -> List[Execution]:
        return self.execution_registry.list_active()

    def get_metrics(self) -> Dict[str, Any]:
        executions = self.execution_registry.list_all()
        by_status: Dict[str, int] = {}
        for execution in executions:
            by_status[execution.status.value] = by_status.get(execution.status.value, 0) + 1
        metrics: Dict[str, Any] = {
            "executions": {"tracked": len(executions), "by_status": by_status},
            "graph_cache": self.graph_cache.export_state(),
            "errors": self.error_handler.get_error_metrics(),
            "circuit_breakers": self.error_handler.get_circuit_breaker_states(),
        }
        get_stats = getattr(self.agent_registry, "get_stats", None)
        if get_stats is not None:
            metrics["agents"] = get_stats()
        return metrics

    def on(self, event: str, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    # ========== Cache management ==========

    def invalidate_agent(self, agent_id: Optional[str] = None) -> int:
        """Drop the compiled graph of ``agent_id`` (all graphs when None)."""
        return self.graph_cache.invalidate(agent_id)

    async def warmup(self, agents: Optional[Iterable[AgentConfig]] = None) -> Dict[str, bool]:
        """Precompile graphs; defaults to every top-level agent in the registry."""
        if agents is None:
            agents = self.agent_registry.list_agents(include_sub_agents=False)
        compile_fns = {agent.id: (lambda agent=agent: self.compile_graph(agent)) for agent in agents}
        return await self.graph_cache.warmup(compile_fns)

    # ========== Node events -> steps ==========

    def _attach_node_listeners(self) -> None:
        self.events.on(NODE_ENTERED, self._on_node_entered)
        self.events.on(NODE_COMPLETED, self._on_node_completed)

    def _on_node_entered(self, payload: Dict[str, Any]) -> None:
        node = payload.get("node")
        if node == "agent":
            first = not payload.get("loops")
            step = ExecutionStep(
                agent=payload.get("agent_id") or "",
                action=StepAction.ROUTING if first else StepAction.ANALYZING,
                content="Analyzing the request" if first else "Reviewing tool results",
                progress=10 if first else 50,
                metadata={"node": node},
            )
        elif node == "tools":
            step = ExecutionStep(
                agent=payload.get("agent_id") or "",
                action=StepAction.ANALYZING,
                content="Running tools",
                progress=50,
                metadata={"node": node},
            )
        else:
            return
        self._record_node_step(payload.get("execution_id"), step)

    def _on_node_completed(self, payload: Dict[str, Any]) -> None:
        if payload.get("node") != "agent":
            return
        has_tool_calls = bool(payload.get("has_tool_calls"))
        step = ExecutionStep(
            agent=payload.get("agent_id") or "",
            action=StepAction.RESPONDING if has_tool_calls else StepAction.COMPLETING,
            content="Requested tool calls" if has_tool_calls else "Prepared the final response",
            progress=75 if has_tool_calls else 100,
            metadata={"node": "agent", "has_tool_calls": has_tool_calls},
        )
        self._record_node_step(payload.get("execution_id"), step)

    def _record_node_step(self, execution_id: Optional[str], step: ExecutionStep) -> None:
        execution = self.execution_registry.get(execution_id) if execution_id else None
        if execution is None or execution.is_terminal:
            return
        execution.add_step(step)
        if execution.parent_execution_id:
            parent = self.execution_registry.get(execution.parent_execution_id)
            if parent is not None and not parent.is_terminal:
                parent.add_step(dataclasses.replace(
                    step,
                    id=f"{step.id}_mirror",
                    metadata={**step.metadata, "mirroredFrom": execution.id},
                ))
