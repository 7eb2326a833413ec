"""In-memory registry of active and recently finished executions."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from .models import Execution

LOGGER = logging.getLogger(__name__)


class ExecutionRegistry:
    """Execution id -> Execution map used for progress polling.

    Every mutation is a single dict operation (``setdefault``/``pop``), so
    overlapping completions cannot interleave a check with an insert or
    removal. Finished executions stay readable for a grace period and are
    then evicted by a loop timer.
    """

    def __init__(self):
        self._executions: Dict[str, Execution] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}

    def add(self, execution: Execution) -> Execution:
        """Register an execution; returns the already-registered one on id clash."""
        existing = self._executions.setdefault(execution.id, execution)
        if existing is not execution:
            LOGGER.warning(f"Execution {execution.id} already registered")
        return existing

    def get(self, execution_id: str) -> Optional[Execution]:
        return self._executions.get(execution_id)

    def pop(self, execution_id: str) -> Optional[Execution]:
        handle = self._evictions.pop(execution_id, None)
        if handle is not None:
            handle.cancel()
        return self._executions.pop(execution_id, None)

    def __contains__(self, execution_id: str) -> bool:
        return execution_id in self._executions

    def __len__(self) -> int:
        return len(self._executions)

    def list_all(self) -> List[Execution]:
        return list(self._executions.values())

    def list_active(self) -> List[Execution]:
        return [e for e in self._executions.values() if not e.is_terminal]

    def schedule_eviction(self, execution_id: str, delay_s: float) -> None:
        """Evict ``execution_id`` after ``delay_s`` seconds."""
        if delay_s <= 0:
            self.pop(execution_id)
            return

        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay_s, self._evict, execution_id)
        previous = self._evictions.pop(execution_id, None)
        if previous is not None:
            previous.cancel()
        self._evictions[execution_id] = handle

    def _evict(self, execution_id: str) -> None:
        self._evictions.pop(execution_id, None)
        if self._executions.pop(execution_id, None) is not None:
            LOGGER.debug(f"Evicted execution {execution_id}")

    def clear(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        self._executions.clear()
