"""Execution budgets with pausable wall-clock accounting.

The execution timeout counts only time spent working. While the engine
waits for a human approval the budget is paused, so a slow approver cannot
fail the execution; the approval window has its own, separate timeout.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from agentOrchestrator.utils.error_handler import ExecutionTimeoutError

LOGGER = logging.getLogger(__name__)

WARNING_UTILIZATION = 80.0


@dataclass(frozen=True)
class BudgetLimits:
    max_execution_s: float
    max_tool_calls: int
    max_agent_cycles: int


QUICK_BUDGET = BudgetLimits(max_execution_s=30, max_tool_calls=5, max_agent_cycles=5)
STANDARD_BUDGET = BudgetLimits(max_execution_s=120, max_tool_calls=20, max_agent_cycles=15)
EXTENDED_BUDGET = BudgetLimits(max_execution_s=300, max_tool_calls=50, max_agent_cycles=30)

BUDGET_PRESETS: Dict[str, BudgetLimits] = {
    "quick": QUICK_BUDGET,
    "standard": STANDARD_BUDGET,
    "extended": EXTENDED_BUDGET,
}


@dataclass
class BudgetStatus:
    exceeded: bool
    reason: Optional[str] = None


class ExecutionBudget:
    """Tracks elapsed working time, tool calls and agent cycles."""

    def __init__(
        self,
        limits: BudgetLimits,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = limits
        self._clock = clock
        self._started = clock()
        self._paused_total = 0.0
        self._paused_at: Optional[float] = None
        self._pause_depth = 0
        self._warned = False
        self.tool_calls = 0
        self.agent_cycles = 0

    @classmethod
    def for_timeout(cls, timeout_s: float, clock: Callable[[], float] = time.monotonic) -> "ExecutionBudget":
        """Budget with the given time limit and the standard call ceilings."""
        limits = BudgetLimits(
            max_execution_s=timeout_s,
            max_tool_calls=STANDARD_BUDGET.max_tool_calls,
            max_agent_cycles=STANDARD_BUDGET.max_agent_cycles,
        )
        return cls(limits, clock=clock)

    # ========== Time ==========

    @property
    def is_paused(self) -> bool:
        return self._paused_at is not None

    def elapsed(self) -> float:
        """Working seconds, excluding paused intervals."""
        now = self._paused_at if self._paused_at is not None else self._clock()
        return max(0.0, now - self._started - self._paused_total)

    def remaining(self) -> float:
        return max(0.0, self.limits.max_execution_s - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.elapsed() >= self.limits.max_execution_s

    def pause(self) -> None:
        """Stop the clock. Pauses nest; the clock restarts on the matching last resume."""
        self._pause_depth += 1
        if self._pause_depth == 1:
            self._paused_at = self._clock()

    def resume(self) -> None:
        if self._pause_depth == 0:
            return
        self._pause_depth -= 1
        if self._pause_depth == 0:
            self._paused_total += self._clock() - self._paused_at
            self._paused_at = None

    @contextmanager
    def paused(self) -> Iterator["ExecutionBudget"]:
        self.pause()
        try:
            yield self
        finally:
            self.resume()

    def ensure_time_left(self) -> float:
        """Return the remaining seconds or raise ExecutionTimeoutError."""
        remaining = self.remaining()
        if remaining <= 0:
            raise ExecutionTimeoutError(
                f"Execution timeout after {self.elapsed():.1f}s (limit {self.limits.max_execution_s:g}s)"
            )
        return remaining

    # ========== Counters ==========

    def record_tool_calls(self, count: int = 1) -> None:
        self.tool_calls += count
        self._maybe_warn()

    def record_agent_cycle(self) -> None:
        self.agent_cycles += 1
        self._maybe_warn()

    def check(self) -> BudgetStatus:
        if self.expired:
            return BudgetStatus(
                True,
                f"Time limit exceeded ({self.elapsed():.1f}s / {self.limits.max_execution_s:g}s)",
            )
        if self.tool_calls >= self.limits.max_tool_calls:
            return BudgetStatus(
                True, f"Tool call limit exceeded ({self.tool_calls} / {self.limits.max_tool_calls})"
            )
        if self.agent_cycles >= self.limits.max_agent_cycles:
            return BudgetStatus(
                True, f"Agent cycle limit exceeded ({self.agent_cycles} / {self.limits.max_agent_cycles})"
            )
        return BudgetStatus(False)

    def utilization(self) -> Dict[str, float]:
        return {
            "time": min(100.0, self.elapsed() / self.limits.max_execution_s * 100),
            "tool_calls": min(100.0, self.tool_calls / max(1, self.limits.max_tool_calls) * 100),
            "cycles": min(100.0, self.agent_cycles / max(1, self.limits.max_agent_cycles) * 100),
        }

    def _maybe_warn(self) -> None:
        if self._warned:
            return
        usage = self.utilization()
        hottest = max(usage, key=usage.get)
        if usage[hottest] > WARNING_UTILIZATION:
            self._warned = True
            LOGGER.warning(f"Execution budget at {usage[hottest]:.0f}% ({hottest})")
