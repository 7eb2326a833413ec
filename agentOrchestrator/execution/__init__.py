"""Execution records, registry, budgets and the engine."""

from .engine import ExecutionEngine
from .events import EventEmitter
from .models import (
    Execution,
    ExecutionContext,
    ExecutionMetrics,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    StepAction,
)
from .registry import ExecutionRegistry
from .timeout import BUDGET_PRESETS, ExecutionBudget

__all__ = [
    "BUDGET_PRESETS",
    "EventEmitter",
    "Execution",
    "ExecutionBudget",
    "ExecutionContext",
    "ExecutionEngine",
    "ExecutionMetrics",
    "ExecutionOptions",
    "ExecutionRegistry",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStep",
    "StepAction",
]
