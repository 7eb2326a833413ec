"""Typed delegation messages and progress stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DelegationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> "DelegationPriority":
        """Lenient parse: "medium" and unknown values map to NORMAL."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text in ("low", "high"):
            return cls(text)
        return cls.NORMAL


class DelegationStage(str, Enum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    RESEARCHING = "researching"
    SYNTHESIZING = "synthesizing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StageSpec:
    stage: DelegationStage
    progress: int
    status: str
    template: str


# Emitted in this order for every delegation that resolves its target.
STAGE_SEQUENCE: Tuple[StageSpec, ...] = (
    StageSpec(DelegationStage.INITIALIZING, 0, "requested", "{source} delegated a task to {target}"),
    StageSpec(DelegationStage.ANALYZING, 10, "accepted", "{target} accepted the task"),
    StageSpec(DelegationStage.PROCESSING, 25, "in_progress", "{target} is processing the task"),
    StageSpec(DelegationStage.RESEARCHING, 40, "in_progress", "{target} is working on the task"),
    StageSpec(DelegationStage.SYNTHESIZING, 70, "in_progress", "{target} is synthesizing results"),
    StageSpec(DelegationStage.FINALIZING, 90, "completing", "{target} is finalizing the response"),
    StageSpec(DelegationStage.COMPLETED, 100, "completed", "{target} completed the task"),
)

STAGES: Dict[DelegationStage, StageSpec] = {spec.stage: spec for spec in STAGE_SEQUENCE}


@dataclass(frozen=True)
class DelegationRequest:
    """A request from a running execution to hand a task to another agent."""

    source_agent: str
    source_execution_id: Optional[str]
    target_agent: str
    task: str
    context: str = ""
    priority: DelegationPriority = DelegationPriority.NORMAL
    user_id: Optional[str] = None
    history: Tuple[Any, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "priority", DelegationPriority.parse(self.priority))
        object.__setattr__(self, "history", tuple(self.history or ()))


@dataclass
class DelegationOutcome:
    """What the delegating agent gets back; failures are reported here, never raised."""

    success: bool
    target_agent: str
    content: str = ""
    error: Optional[str] = None
    child_execution_id: Optional[str] = None
    execution_time_ms: float = 0.0
    tokens_used: int = 0
    is_sub_agent: bool = False
