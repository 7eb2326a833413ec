"""Runtime assembly for the orchestration engine."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from agentOrchestrator.agents.interfaces import AgentRegistryProtocol, InterruptStore, ModelProvider, ToolRuntime
from agentOrchestrator.agents.registry import InMemoryAgentRegistry
from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.config.settings import Settings, get_settings
from agentOrchestrator.execution.events import EventEmitter
from agentOrchestrator.hitl.approval_checker import ApprovalChecker
from agentOrchestrator.persistence.checkpointer import build_checkpointer
from agentOrchestrator.persistence.interrupt_store import InMemoryInterruptStore
from agentOrchestrator.utils.resilience import AgentErrorHandler, CircuitBreaker, RetryConfig

from .orchestrator import AgentOrchestrator

LOGGER = logging.getLogger(__name__)

DEFAULT_APPROVAL_RULES = Path(__file__).resolve().parent.parent / "config" / "approval_rules.yaml"


def build_orchestrator(
    settings: Optional[Settings] = None,
    *,
    model_provider: ModelProvider,
    tool_runtime: Optional[ToolRuntime] = None,
    agent_registry: Optional[AgentRegistryProtocol] = None,
    agents: Iterable[AgentConfig] = (),
    interrupt_store: Optional[InterruptStore] = None,
    checkpointer=None,
    approval_checker: Optional[ApprovalChecker] = None,
    events: Optional[EventEmitter] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AgentOrchestrator:
    """Assemble an orchestrator with its stores, registries and resilience layer.

    Args:
        settings: Application settings (defaults to ``get_settings()``)
        model_provider: Model provider implementation
        tool_runtime: Tool runtime implementation
        agent_registry: Existing registry; an in-memory one is built from ``agents`` otherwise
        agents: Agent configs registered into the in-memory registry
        interrupt_store: Existing interrupt store
        checkpointer: LangGraph saver; MemorySaver by default
        approval_checker: Approval rules; loaded from settings or the bundled rules otherwise
        events: Event bus
        sleep: Sleep used for retry backoff and approval polling
        clock: Monotonic clock for circuit breakers and polling deadlines

    Returns:
        AgentOrchestrator
    """
    settings = settings or get_settings()

    if agent_registry is None:
        agent_registry = InMemoryAgentRegistry(agents)
        LOGGER.info(f"Agent registry initialized: {agent_registry.get_stats()}")

    if approval_checker is None:
        rules_path = Path(settings.interrupts.approval_rules_path or DEFAULT_APPROVAL_RULES)
        approval_checker = ApprovalChecker(config_path=rules_path)
        LOGGER.info(f"HITL approval checker initialized with config: {rules_path}")

    error_handler = AgentErrorHandler(
        retry_config=RetryConfig.from_settings(settings.retry),
        circuit_breaker=CircuitBreaker(
            threshold=settings.circuit_breaker.failure_threshold,
            reset_timeout_ms=settings.circuit_breaker.reset_timeout_ms,
            clock=clock,
        ),
        sleep=sleep,
        clock=clock,
    )

    orchestrator = AgentOrchestrator(
        agent_registry,
        model_provider,
        tool_runtime,
        settings=settings,
        events=events,
        error_handler=error_handler,
        interrupt_store=interrupt_store or InMemoryInterruptStore(sleep=sleep, clock=clock),
        checkpointer=checkpointer or build_checkpointer(),
        approval_checker=approval_checker,
    )
    LOGGER.info(
        f"Orchestrator ready (supervisor={settings.runtime.supervisor_agent_id}, "
        f"timeout={settings.runtime.execution_timeout_s:.0f}s)"
    )
    return orchestrator
