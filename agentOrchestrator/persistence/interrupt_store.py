"""Pending approval records keyed by execution id.

The engine never waits on an in-process future for an approval: it polls
the store, because the approver may write the response from another
process. Any backend giving read-after-write consistency per execution id
can replace the in-memory one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from agentOrchestrator.hitl.interrupts import (
    HumanInterrupt,
    HumanResponse,
    InterruptState,
    coerce_response,
    response_status,
    validate_interrupt_payload,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 0.5
DEFAULT_APPROVAL_TIMEOUT_S = 300.0


class InMemoryInterruptStore:
    """In-process interrupt store.

    Args:
        sleep: Awaitable sleep used while polling (tests inject a fake)
        clock: Monotonic clock used for the polling deadline
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._records: Dict[str, InterruptState] = {}
        self._sleep = sleep
        self._clock = clock

    async def store(
        self,
        execution_id: str,
        thread_id: str,
        payload: Union[HumanInterrupt, Dict[str, Any]],
        user_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> InterruptState:
        """Persist a pending interrupt, replacing any earlier one for the execution."""
        record = InterruptState(
            execution_id=execution_id,
            thread_id=thread_id,
            payload=validate_interrupt_payload(payload),
            user_id=user_id,
            agent_id=agent_id,
        )
        previous = self._records.get(execution_id)
        self._records[execution_id] = record
        if previous is not None:
            LOGGER.warning(
                f"Replaced interrupt {previous.interrupt_id} for {execution_id} with {record.interrupt_id}"
            )
        else:
            LOGGER.info(f"Stored interrupt {record.interrupt_id} for {execution_id}")
        return record

    async def get(self, execution_id: str, force_refresh: bool = False) -> Optional[InterruptState]:
        # Nothing is cached in front of the in-memory map, force_refresh is a no-op here.
        record = self._records.get(execution_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update_response(
        self,
        execution_id: str,
        response: Union[HumanResponse, Dict[str, Any], str],
    ) -> Optional[InterruptState]:
        """Attach a human response; returns None if no record exists."""
        record = self._records.get(execution_id)
        if record is None:
            LOGGER.warning(f"No interrupt to respond to for {execution_id}")
            return None
        human = coerce_response(response)
        updated = record.model_copy(
            update={
                "response": human,
                "status": response_status(human),
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self._records[execution_id] = updated
        LOGGER.info(f"Interrupt {updated.interrupt_id} for {execution_id} -> {updated.status}")
        return updated.model_copy(deep=True)

    async def clear(self, execution_id: str) -> bool:
        removed = self._records.pop(execution_id, None) is not None
        if removed:
            LOGGER.debug(f"Cleared interrupt for {execution_id}")
        return removed

    async def get_all_pending(self) -> List[InterruptState]:
        return [record.model_copy(deep=True) for record in self._records.values() if record.is_pending]

    async def wait_for_response(
        self,
        execution_id: str,
        timeout_s: float = DEFAULT_APPROVAL_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> Optional[HumanResponse]:
        """Poll until a response is attached.

        Returns:
            The response, or None on timeout or when the record disappeared
        """
        deadline = self._clock() + timeout_s
        while True:
            record = await self.get(execution_id, force_refresh=True)
            if record is None:
                LOGGER.warning(f"Interrupt for {execution_id} vanished while waiting")
                return None
            if record.response is not None:
                return record.response
            if self._clock() >= deadline:
                LOGGER.warning(f"No approval for {execution_id} within {timeout_s:g}s")
                return None
            await self._sleep(poll_interval_s)
