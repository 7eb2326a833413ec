"""Utility modules for the orchestration engine."""

from .error_handler import (
    AgentNotFoundError,
    ApprovalTimeoutError,
    CircuitOpenError,
    ErrorCategory,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    GraphExecutionError,
    InvalidInterruptError,
    ModelInvocationError,
    OrchestrationError,
    ToolExecutionError,
    classify_error,
    handle_model_error,
)
from .resilience import AgentErrorHandler, CircuitBreaker, RetryConfig, compute_backoff, jittered_delay

__all__ = [
    "AgentErrorHandler",
    "AgentNotFoundError",
    "ApprovalTimeoutError",
    "CircuitBreaker",
    "CircuitOpenError",
    "ErrorCategory",
    "ExecutionCancelledError",
    "ExecutionTimeoutError",
    "GraphExecutionError",
    "InvalidInterruptError",
    "ModelInvocationError",
    "OrchestrationError",
    "RetryConfig",
    "ToolExecutionError",
    "classify_error",
    "compute_backoff",
    "handle_model_error",
    "jittered_delay",
]
