"""Persistence: checkpoints and pending interrupts."""

from .checkpoint_store import Checkpoint, CheckpointTuple, InMemoryCheckpointStore
from .checkpointer import build_checkpointer
from .interrupt_store import InMemoryInterruptStore

__all__ = [
    "Checkpoint",
    "CheckpointTuple",
    "InMemoryCheckpointStore",
    "InMemoryInterruptStore",
    "build_checkpointer",
]
