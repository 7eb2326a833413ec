"""Checkpoint store keyed by (thread id, namespace, checkpoint id).

``InMemoryCheckpointStore`` is a thin async adapter over the LangGraph saver
the graphs are compiled with, so what the store returns is exactly what a
resumed graph will load.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from langgraph.checkpoint.base import BaseCheckpointSaver, Checkpoint, CheckpointTuple

from .checkpointer import build_checkpointer

LOGGER = logging.getLogger(__name__)

__all__ = ["Checkpoint", "CheckpointTuple", "InMemoryCheckpointStore"]


def _config(thread_id: str, namespace: str = "", checkpoint_id: Optional[str] = None) -> Dict[str, Any]:
    configurable: Dict[str, Any] = {"thread_id": thread_id, "checkpoint_ns": namespace}
    if checkpoint_id:
        configurable["checkpoint_id"] = checkpoint_id
    return {"configurable": configurable}


class InMemoryCheckpointStore:
    """Async checkpoint access backed by a LangGraph ``BaseCheckpointSaver``."""

    def __init__(self, saver: Optional[BaseCheckpointSaver] = None):
        self.saver = saver if saver is not None else build_checkpointer()

    async def get_tuple(
        self,
        thread_id: str,
        namespace: str = "",
        checkpoint_id: Optional[str] = None,
    ) -> Optional[CheckpointTuple]:
        """Latest checkpoint of the thread, or the one with ``checkpoint_id``."""
        return await self.saver.aget_tuple(_config(thread_id, namespace, checkpoint_id))

    async def put_tuple(
        self,
        thread_id: str,
        namespace: str,
        checkpoint: Checkpoint,
        metadata: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Store a checkpoint; returns the config addressing it."""
        latest = await self.get_tuple(thread_id, namespace)
        parent_id = latest.checkpoint["id"] if latest is not None else None
        config = await self.saver.aput(
            _config(thread_id, namespace, parent_id),
            checkpoint,
            metadata,
            checkpoint.get("channel_versions", {}),
        )
        LOGGER.debug(f"Stored checkpoint {checkpoint['id']} for {thread_id}")
        return config

    async def list(
        self,
        thread_id: str,
        namespace: str = "",
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CheckpointTuple]:
        """Checkpoints of the thread, newest first."""
        before_config = _config(thread_id, namespace, before) if before else None
        return [
            item
            async for item in self.saver.alist(_config(thread_id, namespace), before=before_config, limit=limit)
        ]
