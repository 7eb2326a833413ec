"""Execution engine: drives one compiled agent graph to a result.

The graph is streamed with three modes at once:

- ``updates``: per-node deltas, used for counters and interrupt detection
- ``values``: full state snapshots, the latest one is authoritative
- ``custom``: token deltas written by the agent node

An approval interrupt suspends the graph. The engine persists it in the
interrupt store, polls the store for the human response with the execution
budget paused, then resumes the graph with ``Command(resume=...)``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from langchain_core.messages import AIMessage, BaseMessage
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.errors import GraphRecursionError
from langgraph.types import Command

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.config.settings import Settings, get_settings
from agentOrchestrator.graph.message_utils import (
    ensure_message_ids,
    estimate_tokens,
    extract_final_content,
    find_new_messages,
    last_human_text,
    sanitize_stale_tool_messages,
)
from agentOrchestrator.hitl.interrupts import normalize_interrupt_payload, validate_interrupt_payload
from agentOrchestrator.utils.error_handler import (
    ApprovalTimeoutError,
    ExecutionCancelledError,
    GraphExecutionError,
)
from agentOrchestrator.utils.logging_utils import log_error, log_interrupt
from agentOrchestrator.utils.resilience import AgentErrorHandler

from .models import (
    Execution,
    ExecutionContext,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    StepAction,
)
from .timeout import ExecutionBudget

LOGGER = logging.getLogger(__name__)

INTERRUPT_KEY = "__interrupt__"


@dataclass
class _StreamTracker:
    """Mutable view of one graph run across its streaming phases."""

    latest_values: Optional[Dict[str, Any]] = None
    interrupt: Any = None
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)


class ExecutionEngine:
    """Runs compiled graphs for executions.

    Args:
        interrupt_store: Store the pending approvals are written to and polled from
        error_handler: Records unrecoverable failures on the execution
        settings: Runtime and interrupt settings
        clock: Monotonic clock for the execution budget
    """

    def __init__(
        self,
        interrupt_store,
        error_handler: Optional[AgentErrorHandler] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interrupt_store = interrupt_store
        self.error_handler = error_handler
        self.settings = settings or get_settings()
        self._clock = clock
        # execution id -> (budget, parent execution id) for runs in flight
        self._budgets: Dict[str, Tuple[ExecutionBudget, Optional[str]]] = {}
        # graph threads kept after an approval timeout, deleted on close()
        self._retained_threads: Dict[str, BaseCheckpointSaver] = {}

    async def run(
        self,
        agent: AgentConfig,
        graph,
        context: ExecutionContext,
        execution: Execution,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """Stream ``graph`` until it finishes, resolving approval interrupts on the way.

        Returns:
            ExecutionResult built from the messages produced by this run only

        Raises:
            ExecutionTimeoutError: The execution budget ran out
            ApprovalTimeoutError: No human response within the approval window
            ExecutionCancelledError: The execution was cancelled mid-run
            GraphExecutionError: The graph hit its recursion limit
        """
        options = options or ExecutionOptions()
        runtime = self.settings.runtime
        budget = ExecutionBudget.for_timeout(options.timeout_s or runtime.execution_timeout_s, clock=self._clock)

        history = ensure_message_ids(sanitize_stale_tool_messages(context.message_history))
        input_ids = {m.id for m in history}
        user_input = execution.input or last_human_text(history)

        # Each run gets its own graph thread so a retried or repeated run
        # never resumes a checkpoint left behind by an earlier one.
        graph_thread_id = f"{context.thread_id}::{execution.id}::{uuid.uuid4().hex[:8]}"
        config = {
            "configurable": {"thread_id": graph_thread_id, "execution_id": execution.id},
            "recursion_limit": runtime.recursion_limit,
        }
        graph_input: Any = {
            "messages": history,
            "agent_id": agent.id,
            "loops": 0,
            "max_loops": options.max_loops or runtime.max_loops,
            "tool_decisions": {},
            "thread_id": context.thread_id,
            "user_id": context.user_id,
        }

        tracker = _StreamTracker()
        started = self._clock()
        budget_entry = (budget, execution.parent_execution_id)
        self._budgets[execution.id] = budget_entry
        retain_thread = False
        LOGGER.info(f"Running {agent.id} for execution {execution.id} ({len(history)} history messages)")

        try:
            while True:
                tracker.interrupt = None
                await self._within_budget(
                    self._stream_phase(graph, graph_input, config, execution, budget, tracker, options),
                    budget,
                )

                resumed = isinstance(graph_input, Command)
                if tracker.interrupt is None:
                    tracker.interrupt = await self._pending_interrupt(graph, config)
                if tracker.interrupt is None:
                    if resumed:
                        await self.interrupt_store.clear(execution.id)
                    break

                response = await self._await_approval(agent, context, execution, budget, tracker.interrupt)
                graph_input = Command(resume=response.model_dump())

            final_state = tracker.latest_values
            if final_state is None:
                snapshot = await graph.aget_state(config)
                final_state = snapshot.values if snapshot else {}
        except Exception as e:
            # The pending approval stays resumable for inspection.
            retain_thread = isinstance(e, ApprovalTimeoutError)
            log_error(LOGGER, e, f"execution {execution.id}")
            if self.error_handler is not None:
                self.error_handler.handle_execution_error(execution, e)
            raise
        finally:
            if self._budgets.get(execution.id) is budget_entry:
                del self._budgets[execution.id]
            await self._release_thread(graph, graph_thread_id, retain=retain_thread)

        all_messages: List[BaseMessage] = list((final_state or {}).get("messages") or [])
        produced = find_new_messages(all_messages, input_ids)
        content = extract_final_content(produced, user_input)
        tokens = estimate_tokens(produced)
        elapsed_ms = (self._clock() - started) * 1000

        execution.messages.extend(produced)
        execution.metrics.tokens_used += tokens

        LOGGER.info(
            f"Execution {execution.id} produced {len(produced)} message(s), "
            f"{len(tracker.tool_calls)} tool call(s) in {elapsed_ms:.0f}ms"
        )
        return ExecutionResult(
            content=content,
            metadata={
                "agent_id": agent.id,
                "execution_id": execution.id,
                "thread_id": context.thread_id,
                "interrupts": execution.metrics.interrupts_count,
                "budget": budget.utilization(),
            },
            tool_calls=tracker.tool_calls,
            execution_time_ms=elapsed_ms,
            tokens_used=tokens,
            messages=produced,
        )

    async def close(self) -> None:
        """Delete the graph threads retained after approval timeouts."""
        retained, self._retained_threads = self._retained_threads, {}
        for thread_id, saver in retained.items():
            await self._delete_thread(saver, thread_id)

    async def _within_budget(self, phase: Awaitable[None], budget: ExecutionBudget) -> None:
        """Await ``phase`` while the budget has time left.

        The deadline is re-read on every wake-up, so time spent with the budget
        paused (a nested approval wait) never counts against it.
        """
        poll_s = self.settings.interrupts.poll_interval_s
        task = asyncio.ensure_future(phase)
        try:
            while True:
                remaining = budget.remaining()
                if budget.is_paused:
                    remaining = max(remaining, poll_s)
                elif remaining <= 0:
                    budget.ensure_time_left()
                done, _ = await asyncio.wait({task}, timeout=remaining)
                if done:
                    return task.result()
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    LOGGER.debug(f"Abandoned stream phase ended with {type(e).__name__}: {e}")

    async def _release_thread(self, graph, thread_id: str, retain: bool = False) -> None:
        saver = getattr(graph, "checkpointer", None)
        if not isinstance(saver, BaseCheckpointSaver):
            return
        if retain:
            self._retained_threads[thread_id] = saver
            return
        await self._delete_thread(saver, thread_id)

    async def _delete_thread(self, saver: BaseCheckpointSaver, thread_id: str) -> None:
        try:
            await saver.adelete_thread(thread_id)
        except NotImplementedError:
            LOGGER.debug(f"Checkpointer {type(saver).__name__} cannot delete threads")
        except Exception as e:
            LOGGER.warning(f"Failed to delete graph thread {thread_id}: {e}")

    def _ancestor_budgets(self, execution: Execution) -> List[ExecutionBudget]:
        """The budget of ``execution`` followed by those of its running parents."""
        budgets: List[ExecutionBudget] = []
        seen = set()
        current: Optional[str] = execution.id
        while current and current not in seen and current in self._budgets:
            seen.add(current)
            budget, current = self._budgets[current]
            budgets.append(budget)
        return budgets

    async def _stream_phase(
        self,
        graph,
        graph_input: Any,
        config: Dict[str, Any],
        execution: Execution,
        budget: ExecutionBudget,
        tracker: _StreamTracker,
        options: ExecutionOptions,
    ) -> None:
        """Consume one streaming phase; ends at completion or at an interrupt."""
        stream = graph.astream(graph_input, config, stream_mode=["updates", "values", "custom"])
        try:
            async for mode, chunk in stream:
                if execution.status is ExecutionStatus.CANCELLED:
                    raise ExecutionCancelledError(f"Execution {execution.id} was cancelled")

                if mode == "values":
                    tracker.latest_values = chunk
                elif mode == "custom":
                    await self._forward_token(chunk, options)
                elif mode == "updates":
                    self._apply_update(chunk, execution, budget, tracker)
        except GraphRecursionError as e:
            raise GraphExecutionError(
                f"Graph for execution {execution.id} hit the recursion limit "
                f"of {config.get('recursion_limit')} steps",
                user_message="The agent took too many steps without finishing. Please simplify the request.",
            ) from e

    def _apply_update(
        self,
        chunk: Dict[str, Any],
        execution: Execution,
        budget: ExecutionBudget,
        tracker: _StreamTracker,
    ) -> None:
        for node, update in (chunk or {}).items():
            if node == INTERRUPT_KEY:
                tracker.interrupt = update
                continue
            if node != "agent" or not isinstance(update, dict):
                continue

            budget.record_agent_cycle()
            for message in update.get("messages") or []:
                if not isinstance(message, AIMessage) or not message.tool_calls:
                    continue
                calls = list(message.tool_calls)
                tracker.tool_calls.extend(calls)
                execution.metrics.tool_calls_count += len(calls)
                budget.record_tool_calls(len(calls))

            status = budget.check()
            if status.exceeded:
                LOGGER.warning(f"Execution {execution.id} over budget: {status.reason}")

    async def _forward_token(self, chunk: Any, options: ExecutionOptions) -> None:
        if options.on_token is None or not isinstance(chunk, dict) or chunk.get("type") != "token":
            return
        try:
            result = options.on_token(chunk.get("content", ""))
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            LOGGER.warning(f"Token callback failed: {e}")

    async def _pending_interrupt(self, graph, config: Dict[str, Any]) -> Any:
        """Interrupts left on the graph's tasks when the stream did not report one."""
        snapshot = await graph.aget_state(config)
        for task in getattr(snapshot, "tasks", None) or ():
            if task.interrupts:
                return task.interrupts
        return None

    async def _await_approval(
        self,
        agent: AgentConfig,
        context: ExecutionContext,
        execution: Execution,
        budget: ExecutionBudget,
        raw_interrupt: Any,
    ):
        """Persist the interrupt and poll for the human response."""
        payload = validate_interrupt_payload(normalize_interrupt_payload(raw_interrupt))
        record = await self.interrupt_store.store(
            execution.id,
            context.thread_id,
            payload,
            user_id=context.user_id,
            agent_id=agent.id,
        )
        execution.metrics.interrupts_count += 1
        execution.add_step(ExecutionStep(
            agent=agent.id,
            action=StepAction.INTERRUPT,
            content=payload.description or f"Approval required for {payload.action_request.action}",
            progress=50,
            metadata={
                "interrupt_id": record.interrupt_id,
                "action": payload.action_request.action,
                "args": payload.action_request.args,
                "status": "pending",
            },
        ))
        log_interrupt(LOGGER, execution.id, payload.action_request.action, "pending")

        interrupts = self.settings.interrupts
        # A delegated run waits inside its parent's tools node, so the whole
        # chain of budgets stops while the human decides.
        with ExitStack() as stack:
            for held in self._ancestor_budgets(execution) or [budget]:
                stack.enter_context(held.paused())
            response = await self.interrupt_store.wait_for_response(
                execution.id,
                timeout_s=interrupts.approval_timeout_s,
                poll_interval_s=interrupts.poll_interval_s,
            )

        if execution.status is ExecutionStatus.CANCELLED:
            raise ExecutionCancelledError(f"Execution {execution.id} was cancelled")
        if response is None:
            raise ApprovalTimeoutError(
                f"No approval response for {payload.action_request.action} "
                f"within {interrupts.approval_timeout_s:g}s",
                user_message="The request timed out waiting for approval.",
            )

        log_interrupt(LOGGER, execution.id, payload.action_request.action, response.type)
        return response
