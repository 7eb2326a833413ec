"""Ambient per-request correlation values.

Set by the orchestrator for the duration of an execution and restored when
it finishes, so nested delegated executions see their own values and the
outer ones come back afterwards.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

current_user_id: ContextVar[Optional[str]] = ContextVar("current_user_id", default=None)
current_execution_id: ContextVar[Optional[str]] = ContextVar("current_execution_id", default=None)


@contextmanager
def request_scope(user_id: Optional[str], execution_id: Optional[str]) -> Iterator[None]:
    user_token = current_user_id.set(user_id)
    execution_token = current_execution_id.set(execution_id)
    try:
        yield
    finally:
        current_execution_id.reset(execution_token)
        current_user_id.reset(user_token)


def get_current_user_id() -> Optional[str]:
    return current_user_id.get()


def get_current_execution_id() -> Optional[str]:
    return current_execution_id.get()
