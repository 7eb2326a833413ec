"""Error taxonomy and classification for orchestration failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

LOGGER = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Closed set of failure categories."""

    NETWORK = "network"
    MODEL = "model"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    GRAPH = "graph"
    TOOL = "tool"
    UNKNOWN = "unknown"


class OrchestrationError(Exception):
    """Base exception for orchestration errors.

    Subclasses may pin a ``category`` so classification does not depend on
    message wording, and may set ``retryable = False`` to opt out of retries
    regardless of category.
    """

    category: Optional[ErrorCategory] = None
    retryable: Optional[bool] = None

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ModelInvocationError(OrchestrationError):
    """Error during model invocation."""
    category = ErrorCategory.MODEL


class ToolExecutionError(OrchestrationError):
    """Error during tool execution."""
    category = ErrorCategory.TOOL


class GraphExecutionError(OrchestrationError):
    """Graph compilation or traversal failed."""
    category = ErrorCategory.GRAPH


class ExecutionTimeoutError(OrchestrationError):
    """Execution budget exhausted."""
    category = ErrorCategory.TIMEOUT
    retryable = False


class ApprovalTimeoutError(OrchestrationError):
    """No human response arrived within the approval window."""
    category = ErrorCategory.TIMEOUT
    retryable = False


class CircuitOpenError(OrchestrationError):
    """Calls for a context key are being rejected by its circuit breaker."""
    retryable = False

    def __init__(self, context_key: str):
        super().__init__(
            f"Circuit breaker open for {context_key}",
            user_message="This service is temporarily unavailable. Please try again shortly.",
        )
        self.context_key = context_key


class AgentNotFoundError(OrchestrationError):
    """Delegation target does not resolve to a known agent."""
    category = ErrorCategory.VALIDATION

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} not found")
        self.agent_id = agent_id


class InvalidInterruptError(OrchestrationError):
    """Interrupt payload does not have the expected shape."""
    category = ErrorCategory.VALIDATION


class ExecutionCancelledError(OrchestrationError):
    """Execution was cancelled while work was in flight."""
    retryable = False


@dataclass(frozen=True)
class ClassificationRule:
    category: ErrorCategory
    matches: Callable[[BaseException, str, str], bool]


def _contains(*needles: str) -> Callable[[BaseException, str, str], bool]:
    def check(_error: BaseException, message: str, _name: str) -> bool:
        return any(needle in message for needle in needles)
    return check


def _is_network(error: BaseException, message: str, name: str) -> bool:
    if isinstance(error, ConnectionError):
        return True
    return _contains("network", "fetch failed", "connection")(error, message, name)


def _is_timeout(error: BaseException, message: str, name: str) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    return "timeout" in message or "timed out" in message or name == "aborterror"


def _is_model(_error: BaseException, message: str, name: str) -> bool:
    return "openai" in name or "anthropic" in name or "model" in message


# Evaluated top to bottom; the first match wins. Timeout sits above model so
# "model request timeout" is classified as a timeout.
CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(ErrorCategory.NETWORK, _is_network),
    ClassificationRule(ErrorCategory.TIMEOUT, _is_timeout),
    ClassificationRule(ErrorCategory.RATE_LIMIT, _contains("rate limit", "rate_limit", "quota", "429")),
    ClassificationRule(ErrorCategory.AUTHENTICATION, _contains("unauthorized", "401", "403")),
    ClassificationRule(ErrorCategory.VALIDATION, _contains("validation", "invalid", "schema")),
    ClassificationRule(ErrorCategory.GRAPH, _contains("graph", "node", "edge")),
    ClassificationRule(ErrorCategory.TOOL, _contains("tool", "function call")),
    ClassificationRule(ErrorCategory.MODEL, _is_model),
)


def classify_error(error: BaseException) -> ErrorCategory:
    """Classify an error into an ErrorCategory.

    An explicit ``category`` attribute on the error wins; otherwise the
    ordered rules in CLASSIFICATION_RULES are applied to the lower-cased
    message and exception type name.

    Args:
        error: Exception to classify

    Returns:
        ErrorCategory
    """
    explicit = getattr(error, "category", None)
    if isinstance(explicit, ErrorCategory):
        return explicit

    message = str(error).lower()
    name = type(error).__name__.lower()
    for rule in CLASSIFICATION_RULES:
        if rule.matches(error, message, name):
            return rule.category
    return ErrorCategory.UNKNOWN


def handle_model_error(error: BaseException) -> str:
    """Convert a failure into a user-facing sentence.

    Args:
        error: Exception raised during execution

    Returns:
        User-friendly error message (never raw provider text)
    """
    user_message = getattr(error, "user_message", None)
    if isinstance(error, OrchestrationError) and user_message and user_message != str(error):
        return user_message

    category = classify_error(error)
    if category == ErrorCategory.RATE_LIMIT:
        return "The model service is receiving too many requests. Please try again in a minute."
    if category == ErrorCategory.TIMEOUT:
        return "The request took too long to complete. Please try again."
    if category == ErrorCategory.AUTHENTICATION:
        return "The model service rejected our credentials. Please contact an administrator."
    if category == ErrorCategory.NETWORK:
        return "A network problem interrupted the request. Please try again."
    if category == ErrorCategory.TOOL:
        return "A tool used to answer your request failed."
    return "Something went wrong while processing your request. Please try again."
