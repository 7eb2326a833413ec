"""Retry with backoff, per-context circuit breakers and error metrics.

Retries are driven by tenacity. Each context key (for example
``agent_execution_<id>`` or a delegation target) owns a circuit breaker that
opens after repeated failures and fast-fails calls until its reset timeout
has elapsed since the last failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from .error_handler import CircuitOpenError, ErrorCategory, classify_error, handle_model_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: FrozenSet[ErrorCategory] = frozenset(
    {ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.RATE_LIMIT, ErrorCategory.MODEL}
)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1
    retryable_categories: FrozenSet[ErrorCategory] = DEFAULT_RETRYABLE

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        """Build from a RetrySettings group."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            backoff_multiplier=settings.backoff_multiplier,
            jitter_ratio=settings.jitter_ratio,
            retryable_categories=frozenset(ErrorCategory(c) for c in settings.retryable_categories),
        )


def compute_backoff(attempt: int, config: RetryConfig) -> float:
    """Un-jittered delay in ms after the given (1-based) failed attempt."""
    delay = config.base_delay_ms * (config.backoff_multiplier ** (attempt - 1))
    return min(delay, config.max_delay_ms)


def jittered_delay(attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random) -> float:
    """Backoff plus up to ``jitter_ratio`` of itself, in ms."""
    delay = compute_backoff(attempt, config)
    return delay + rng() * delay * config.jitter_ratio


@dataclass
class CircuitBreakerState:
    context_key: str
    threshold: int
    reset_timeout_ms: float
    failure_count: int = 0
    is_open: bool = False
    last_failure_time: Optional[float] = None
    trial_in_flight: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_key": self.context_key,
            "is_open": self.is_open,
            "trial_in_flight": self.trial_in_flight,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "reset_timeout_ms": self.reset_timeout_ms,
        }


class CircuitBreaker:
    """Per-key fail-fast guard.

    Opens once ``failure_count >= threshold``. While open, ``is_open`` keeps
    answering True until ``reset_timeout_ms`` has elapsed since the last
    failure; the breaker then lets exactly one call through as a trial and
    keeps rejecting the others until that trial settles. A successful trial
    closes it with a zeroed count, a failed trial re-opens it and restarts
    the timer.
    """

    def __init__(
        self,
        threshold: int = 5,
        reset_timeout_ms: float = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock
        self._states: Dict[str, CircuitBreakerState] = {}

    def _state(self, context_key: str) -> CircuitBreakerState:
        state = self._states.get(context_key)
        if state is None:
            state = self._states.setdefault(
                context_key,
                CircuitBreakerState(context_key, self.threshold, self.reset_timeout_ms),
            )
        return state

    def is_open(self, context_key: str) -> bool:
        state = self._states.get(context_key)
        if state is None:
            return False
        if not state.is_open:
            return state.trial_in_flight

        elapsed_ms = (self._clock() - (state.last_failure_time or 0.0)) * 1000
        if elapsed_ms >= state.reset_timeout_ms:
            state.is_open = False
            state.trial_in_flight = True
            # Half-open: one more failure re-opens immediately.
            state.failure_count = state.threshold - 1
            LOGGER.info(f"Circuit breaker for {context_key} half-open after {elapsed_ms:.0f}ms")
            return False
        return True

    def record_failure(self, context_key: str) -> None:
        state = self._state(context_key)
        state.trial_in_flight = False
        state.failure_count += 1
        state.last_failure_time = self._clock()
        if state.failure_count >= state.threshold and not state.is_open:
            state.is_open = True
            LOGGER.warning(
                f"Circuit breaker opened for {context_key} after {state.failure_count} failures"
            )

    def record_success(self, context_key: str) -> None:
        state = self._states.get(context_key)
        if state is not None:
            state.failure_count = 0
            state.is_open = False
            state.trial_in_flight = False

    def release_trial(self, context_key: str) -> None:
        """Let another caller try after a trial ended without an outcome."""
        state = self._states.get(context_key)
        if state is not None:
            state.trial_in_flight = False

    def reset(self, context_key: Optional[str] = None) -> None:
        if context_key is None:
            self._states.clear()
        else:
            self._states.pop(context_key, None)

    def get_states(self) -> Dict[str, Dict[str, Any]]:
        return {key: state.to_dict() for key, state in self._states.items()}


@dataclass
class ErrorMetrics:
    category: ErrorCategory
    count: int = 0
    last_occurrence: Optional[datetime] = None
    average_recovery_time_ms: float = 0.0
    successful_retries: int = 0
    failed_retries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "count": self.count,
            "last_occurrence": self.last_occurrence.isoformat() if self.last_occurrence else None,
            "average_recovery_time_ms": self.average_recovery_time_ms,
            "successful_retries": self.successful_retries,
            "failed_retries": self.failed_retries,
        }


@dataclass
class _AttemptLog:
    first_failure_at: Optional[float] = None
    last_category: Optional[ErrorCategory] = None
    attempts: int = 0


def _mark_exhausted(error: BaseException) -> None:
    # An enclosing with_retry must not run the same failure again.
    try:
        error.retries_exhausted = True
    except AttributeError:
        pass


class AgentErrorHandler:
    """Classified-error-aware retry around fallible async operations."""

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._metrics: Dict[ErrorCategory, ErrorMetrics] = {}
        # execution id -> retries scheduled while that execution was current
        self._retries: Dict[str, int] = {}

    # ========== Classification ==========

    def is_retryable(self, error: BaseException, config: Optional[RetryConfig] = None) -> bool:
        if getattr(error, "retries_exhausted", False):
            return False
        explicit = getattr(error, "retryable", None)
        if explicit is not None:
            return bool(explicit)
        config = config or self.retry_config
        return classify_error(error) in config.retryable_categories

    # ========== Metrics ==========

    def record_error(self, error: BaseException, recovery_time_ms: Optional[float] = None) -> ErrorMetrics:
        category = classify_error(error)
        metrics = self._metrics.get(category)
        if metrics is None:
            metrics = self._metrics.setdefault(category, ErrorMetrics(category=category))
            if recovery_time_ms is not None:
                metrics.average_recovery_time_ms = recovery_time_ms
        elif recovery_time_ms is not None:
            metrics.average_recovery_time_ms = (metrics.average_recovery_time_ms + recovery_time_ms) / 2
        metrics.count += 1
        metrics.last_occurrence = datetime.now(timezone.utc)
        return metrics

    def _record_recovery(self, category: ErrorCategory, recovery_time_ms: float) -> None:
        metrics = self._metrics.setdefault(category, ErrorMetrics(category=category))
        if metrics.successful_retries == 0 and metrics.average_recovery_time_ms == 0.0:
            metrics.average_recovery_time_ms = recovery_time_ms
        else:
            metrics.average_recovery_time_ms = (metrics.average_recovery_time_ms + recovery_time_ms) / 2
        metrics.successful_retries += 1

    def get_error_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {category.value: metrics.to_dict() for category, metrics in self._metrics.items()}

    def get_circuit_breaker_states(self) -> Dict[str, Dict[str, Any]]:
        return self.circuit_breaker.get_states()

    def reset_metrics(self) -> None:
        self._metrics.clear()
        self._retries.clear()

    def take_retry_count(self, execution_id: str) -> int:
        """Retries made on behalf of ``execution_id`` since the last call."""
        return self._retries.pop(execution_id, 0)

    # ========== Retry ==========

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context_key: str = "unknown",
        config: Optional[RetryConfig] = None,
        **overrides: Any,
    ) -> T:
        """Run ``operation`` with retry and circuit breaking.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            context_key: Circuit breaker key
            config: RetryConfig to use instead of the handler default
            **overrides: Field overrides applied on top of the config

        Returns:
            Result of the first successful attempt

        Raises:
            CircuitOpenError: The breaker for ``context_key`` is open
            Exception: The last error once retries are exhausted or on a
                non-retryable error
        """
        config = config or self.retry_config
        if overrides:
            config = replace(config, **overrides)

        log = _AttemptLog()

        def wait(retry_state: RetryCallState) -> float:
            return jittered_delay(retry_state.attempt_number, config, self._rng) / 1000

        def before_sleep(retry_state: RetryCallState) -> None:
            from agentOrchestrator.execution.request_context import get_current_execution_id

            execution_id = get_current_execution_id()
            if execution_id:
                self._retries[execution_id] = self._retries.get(execution_id, 0) + 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            LOGGER.warning(
                f"Attempt {retry_state.attempt_number}/{config.max_attempts} failed for "
                f"{context_key}: {error}. Retrying in {delay * 1000:.0f}ms"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait,
            retry=retry_if_exception(lambda e: self.is_retryable(e, config)),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(operation, context_key, log)
        except CircuitOpenError:
            raise
        except Exception as error:
            category = classify_error(error)
            self._metrics.setdefault(category, ErrorMetrics(category=category)).failed_retries += 1
            LOGGER.error(
                f"{context_key} failed after {log.attempts} attempt(s) [{category.value}]: {error}"
            )
            _mark_exhausted(error)
            raise

        if log.attempts > 1 and log.last_category is not None:
            recovery_ms = (self._clock() - (log.first_failure_at or self._clock())) * 1000
            self._record_recovery(log.last_category, recovery_ms)
            LOGGER.info(f"{context_key} recovered after {log.attempts} attempts")
        return result

    async def _attempt(self, operation: Callable[[], Awaitable[T]], context_key: str, log: _AttemptLog) -> T:
        if self.circuit_breaker.is_open(context_key):
            raise CircuitOpenError(context_key)

        log.attempts += 1
        try:
            result = await operation()
        except asyncio.CancelledError:
            self.circuit_breaker.release_trial(context_key)
            raise
        except Exception as error:
            if log.first_failure_at is None:
                log.first_failure_at = self._clock()
            log.last_category = classify_error(error)
            self.circuit_breaker.record_failure(context_key)
            self.record_error(error)
            raise

        self.circuit_breaker.record_success(context_key)
        return result

    # ========== Execution bookkeeping ==========

    def handle_execution_error(self, execution, error: BaseException) -> None:
        """Mark an execution failed and record the error against it."""
        from agentOrchestrator.execution.models import ExecutionStatus

        changed = execution.set_status(ExecutionStatus.FAILED)
        if changed:
            execution.error = str(error)
            execution.user_message = handle_model_error(error)
            execution.mark_ended()
        execution.metrics.error_count += 1
        _mark_exhausted(error)
        LOGGER.error(f"Execution {execution.id} failed [{classify_error(error).value}]: {error}")
