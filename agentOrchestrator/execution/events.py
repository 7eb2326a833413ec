"""Fire-and-forget lifecycle events."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Set

LOGGER = logging.getLogger(__name__)

EXECUTION_STARTED = "execution.started"
EXECUTION_COMPLETED = "execution.completed"
EXECUTION_FAILED = "execution.failed"
EXECUTION_CANCELLED = "execution.cancelled"
DELEGATION_REQUESTED = "delegation.requested"
DELEGATION_PROGRESS = "delegation.progress"
DELEGATION_COMPLETED = "delegation.completed"
DELEGATION_FAILED = "delegation.failed"
DELEGATION_SKIPPED = "delegation.skipped"
NODE_ENTERED = "node.entered"
NODE_COMPLETED = "node.completed"

Listener = Callable[..., Any]


class EventEmitter:
    """Synchronous in-process event bus.

    Listeners run inline in registration order, so events emitted from one
    execution are observed in the order they were produced. A listener that
    returns a coroutine is scheduled on the running loop. Listener failures
    are logged and never reach the emitter.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def once(self, event: str, listener: Listener) -> None:
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args, **kwargs)

        self.on(event, wrapper)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``event``.

        Returns:
            Number of listeners invoked
        """
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(payload)
            except Exception as e:
                LOGGER.warning(f"Listener for {event} failed: {e}", exc_info=True)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(event, result)
        return len(listeners)

    def _schedule(self, event: str, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            LOGGER.warning(f"Dropped async listener for {event}: no running event loop")
            return

        self._pending.add(task)

        def done(finished: asyncio.Task) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                LOGGER.warning(f"Async listener for {event} failed: {finished.exception()}")

        task.add_done_callback(done)

    def remove_all_listeners(self, event: str = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
