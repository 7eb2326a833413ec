"""Execution records, steps and metrics."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import BaseMessage

LOGGER = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class StepAction(str, Enum):
    ROUTING = "routing"
    ANALYZING = "analyzing"
    RESPONDING = "responding"
    DELEGATING = "delegating"
    COMPLETING = "completing"
    INTERRUPT = "interrupt"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _millis() -> int:
    return int(time.time() * 1000)


def generate_execution_id() -> str:
    """``exec_<ms>_<random>``"""
    return f"exec_{_millis()}_{secrets.token_hex(4)}"


def generate_delegation_thread_id() -> str:
    return f"delegation_{_millis()}_{secrets.token_hex(4)}"


def generate_step_id(prefix: str = "step") -> str:
    return f"{prefix}_{_millis()}_{secrets.token_hex(3)}"


@dataclass
class ExecutionStep:
    """One observable unit of progress (the UI polling record)."""

    agent: str
    action: StepAction
    content: str
    progress: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_step_id)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "agent": self.agent,
            "action": self.action.value,
            "content": self.content,
            "progress": self.progress,
            "metadata": dict(self.metadata),
        }


@dataclass
class ExecutionMetrics:
    execution_time_ms: float = 0.0
    tokens_used: int = 0
    tool_calls_count: int = 0
    delegations_count: int = 0
    interrupts_count: int = 0
    error_count: int = 0
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Execution:
    """One attempt to satisfy a request via one agent.

    Status moves from running to exactly one terminal value and never back;
    use ``set_status`` rather than assigning ``status`` directly.
    """

    id: str
    agent_id: str
    thread_id: str
    user_id: str
    input: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    result: Optional[str] = None
    error: Optional[str] = None
    user_message: Optional[str] = None  # safe to show the end user
    parent_execution_id: Optional[str] = None
    root_execution_id: Optional[str] = None
    steps: List[ExecutionStep] = field(default_factory=list)
    messages: List[BaseMessage] = field(default_factory=list)
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.root_execution_id is None:
            self.root_execution_id = self.id

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def set_status(self, status: ExecutionStatus) -> bool:
        """Apply a status transition.

        Returns:
            True if the status changed, False if the transition was refused
            (already terminal, or an attempt to re-enter running)
        """
        status = ExecutionStatus(status)
        if self.status.is_terminal:
            if status is not self.status:
                LOGGER.debug(f"Ignoring {self.status.value} -> {status.value} for {self.id}")
            return False
        if status is ExecutionStatus.RUNNING:
            return False
        self.status = status
        return True

    def mark_ended(self) -> None:
        if self.end_time is None:
            self.end_time = max(utcnow(), self.start_time)
            wall_ms = (self.end_time - self.start_time).total_seconds() * 1000
            # Delegated time may already be folded in; never shrink it.
            self.metrics.execution_time_ms = max(self.metrics.execution_time_ms, wall_ms)

    def add_step(self, step: ExecutionStep) -> ExecutionStep:
        self.steps.append(step)
        return step

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "thread_id": self.thread_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "input": self.input,
            "result": self.result,
            "error": self.error,
            "user_message": self.user_message,
            "parent_execution_id": self.parent_execution_id,
            "root_execution_id": self.root_execution_id,
            "steps": [step.to_dict() for step in self.steps],
            "message_count": len(self.messages),
            "metrics": self.metrics.to_dict(),
        }


@dataclass
class ExecutionContext:
    thread_id: str
    user_id: str
    agent_id: str
    message_history: List[BaseMessage] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionOptions:
    """Per-call knobs.

    Attributes:
        timeout_s: Execution budget override (approval waits excluded)
        on_token: Called with each streamed token delta
        max_loops: Agent/tool loop ceiling override
        priority: Informational priority carried on delegated runs
    """

    timeout_s: Optional[float] = None
    on_token: Optional[Callable[[str], Any]] = None
    max_loops: Optional[int] = None
    priority: str = "normal"


@dataclass
class ExecutionResult:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    execution_time_ms: float = 0.0
    tokens_used: int = 0
    messages: List[BaseMessage] = field(default_factory=list)
