"""Per-agent cache of compiled graphs.

Compiling an agent graph is paid once per agent id; the cached artifact is
reused until the agent is explicitly invalidated (for example after its
configuration changed).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

LOGGER = logging.getLogger(__name__)

CompileFn = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class CompiledGraphEntry:
    agent_id: str
    compiled: Any
    compile_time_ms: float
    compiled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class GraphCacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    total_graphs: int = 0
    avg_compile_time_ms: float = 0.0


class GraphCache:
    """Agent id -> compiled graph.

    Concurrent misses for the same agent share one compilation: the first
    caller registers an in-flight future with a single ``setdefault`` and
    the others await it.
    """

    def __init__(self):
        self._entries: Dict[str, CompiledGraphEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._stats = GraphCacheStats()
        self._compiles = 0

    async def get_or_compile(self, agent_id: str, compile_fn: CompileFn) -> Any:
        entry = self._entries.get(agent_id)
        if entry is not None:
            self._stats.hits += 1
            LOGGER.debug(f"Graph cache hit for {agent_id}")
            return entry.compiled

        future = asyncio.get_running_loop().create_future()
        inflight = self._inflight.setdefault(agent_id, future)
        if inflight is not future:
            self._stats.hits += 1
            return await asyncio.shield(inflight)

        self._stats.misses += 1
        LOGGER.info(f"Graph cache miss, compiling {agent_id}")
        started = time.perf_counter()
        try:
            compiled = compile_fn()
            if inspect.isawaitable(compiled):
                compiled = await compiled
        except BaseException as e:
            self._inflight.pop(agent_id, None)
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn at GC.
            future.exception()
            LOGGER.error(f"Failed to compile graph for {agent_id}: {e}")
            raise

        compile_time_ms = (time.perf_counter() - started) * 1000
        self._entries[agent_id] = CompiledGraphEntry(agent_id, compiled, compile_time_ms)
        self._inflight.pop(agent_id, None)
        future.set_result(compiled)
        self._record_compile_time(compile_time_ms)
        LOGGER.info(f"Compiled graph for {agent_id} in {compile_time_ms:.1f}ms")
        return compiled

    def _record_compile_time(self, compile_time_ms: float) -> None:
        self._compiles += 1
        avg = self._stats.avg_compile_time_ms
        self._stats.avg_compile_time_ms = avg + (compile_time_ms - avg) / self._compiles

    def invalidate(self, agent_id: Optional[str] = None) -> int:
        """Drop one agent's graph, or every graph when ``agent_id`` is None.

        Returns:
            Number of graphs removed
        """
        if agent_id is not None:
            removed = 1 if self._entries.pop(agent_id, None) is not None else 0
        else:
            removed = len(self._entries)
            self._entries.clear()
        self._stats.invalidations += removed
        if removed:
            LOGGER.info(f"Invalidated {removed} cached graph(s){f' for {agent_id}' if agent_id else ''}")
        return removed

    def has(self, agent_id: str) -> bool:
        return agent_id in self._entries

    def get(self, agent_id: str) -> Optional[Any]:
        entry = self._entries.get(agent_id)
        return entry.compiled if entry else None

    def get_stats(self) -> GraphCacheStats:
        return GraphCacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            invalidations=self._stats.invalidations,
            total_graphs=len(self._entries),
            avg_compile_time_ms=self._stats.avg_compile_time_ms,
        )

    def get_hit_rate(self) -> float:
        total = self._stats.hits + self._stats.misses
        return 0.0 if total == 0 else self._stats.hits / total

    async def warmup(self, compile_fns: Mapping[str, CompileFn]) -> Dict[str, bool]:
        """Precompile several graphs; failures are logged, not raised.

        Returns:
            agent id -> whether it compiled
        """
        started = time.perf_counter()
        agent_ids = list(compile_fns)
        results = await asyncio.gather(
            *(self.get_or_compile(agent_id, compile_fns[agent_id]) for agent_id in agent_ids),
            return_exceptions=True,
        )
        outcome = {}
        for agent_id, result in zip(agent_ids, results):
            outcome[agent_id] = not isinstance(result, BaseException)
            if isinstance(result, BaseException):
                LOGGER.warning(f"Warmup failed for {agent_id}: {result}")
        LOGGER.info(
            f"Warmup compiled {sum(outcome.values())}/{len(outcome)} graphs "
            f"in {(time.perf_counter() - started) * 1000:.0f}ms"
        )
        return outcome

    def export_state(self) -> Dict[str, Any]:
        return {
            "stats": self.get_stats().__dict__,
            "hit_rate": self.get_hit_rate(),
            "graphs": [
                {
                    "agent_id": entry.agent_id,
                    "compiled_at": entry.compiled_at.isoformat(),
                    "compile_time_ms": entry.compile_time_ms,
                }
                for entry in self._entries.values()
            ],
        }

    def clear(self) -> None:
        self._entries.clear()
        self._stats = GraphCacheStats()
        self._compiles = 0
