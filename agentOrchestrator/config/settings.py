"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
All settings classes automatically load from environment variables with support for
multiple alias names (e.g., RETRY_MAX_ATTEMPTS and MAX_RETRY_ATTEMPTS both work).

Example:
    from agentOrchestrator.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    timeout = settings.runtime.execution_timeout_s
    attempts = settings.retry.max_attempts
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class RuntimeSettings(BaseSettings):
    """Execution ceilings and orchestration wiring.

    - execution_timeout_s: default budget for a single execution (approval waits excluded)
    - specialist_timeout_s / supervisor_timeout_s: budgets for delegated children by role
    - tool_timeout_s: hard per-call ceiling enforced around the tool runtime
    - registry_grace_s: how long a finished execution stays pollable
    - supervisor_agent_id: the agent routed through "execute with routing"
    """

    execution_timeout_s: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("EXECUTION_TIMEOUT_S", "MAX_EXECUTION_SECONDS"),
    )
    specialist_timeout_s: float = Field(
        default=180.0,
        gt=0,
        validation_alias=AliasChoices("SPECIALIST_TIMEOUT_S", "MAX_EXECUTION_SECONDS_SPECIALIST"),
    )
    supervisor_timeout_s: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("SUPERVISOR_TIMEOUT_S", "MAX_EXECUTION_SECONDS_SUPERVISOR"),
    )
    tool_timeout_s: float = Field(default=60.0, gt=0, alias="TOOL_TIMEOUT_S")
    registry_grace_s: float = Field(default=60.0, ge=0, alias="REGISTRY_GRACE_S")
    recursion_limit: int = Field(default=50, ge=5, le=500, alias="GRAPH_RECURSION_LIMIT")
    max_loops: int = Field(default=25, ge=1, le=200, alias="MAX_AGENT_LOOPS")
    supervisor_agent_id: str = Field(default="supervisor", alias="SUPERVISOR_AGENT_ID")
    delegation_history_window: int = Field(default=6, ge=0, le=50, alias="DELEGATION_HISTORY_WINDOW")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class RetrySettings(BaseSettings):
    """Backoff policy for retried operations."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        validation_alias=AliasChoices("RETRY_MAX_ATTEMPTS", "MAX_RETRY_ATTEMPTS"),
    )
    base_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_BASE_DELAY_MS")
    max_delay_ms: int = Field(default=30000, ge=0, alias="RETRY_MAX_DELAY_MS")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, alias="RETRY_BACKOFF_MULTIPLIER")
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0, alias="RETRY_JITTER_RATIO")
    retryable_categories: List[str] = Field(
        default_factory=lambda: ["network", "timeout", "rate_limit", "model"],
        alias="RETRY_CATEGORIES",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class CircuitBreakerSettings(BaseSettings):
    """Fail-fast thresholds per context key."""

    failure_threshold: int = Field(default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD")
    reset_timeout_ms: int = Field(default=60000, ge=0, alias="CIRCUIT_RESET_TIMEOUT_MS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class InterruptSettings(BaseSettings):
    """Human-in-the-loop approval settings.

    - poll_interval_s: how often the interrupt store is polled for a response
    - approval_timeout_s: approval window, independent of the execution budget
    - approval_rules_path: optional YAML file with tool approval rules
    """

    poll_interval_s: float = Field(default=0.5, gt=0, alias="INTERRUPT_POLL_INTERVAL_S")
    approval_timeout_s: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("APPROVAL_TIMEOUT_S", "INTERRUPT_TIMEOUT_S"),
    )
    approval_rules_path: Optional[str] = Field(default=None, alias="APPROVAL_RULES_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Hierarchical structure containing four nested settings groups:
    - runtime: Execution ceilings and supervisor wiring (RuntimeSettings)
    - retry: Backoff policy (RetrySettings)
    - circuit_breaker: Fail-fast thresholds (CircuitBreakerSettings)
    - interrupts: Approval polling and timeouts (InterruptSettings)

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    interrupts: InterruptSettings = Field(default_factory=InterruptSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Returns:
        Settings: Cached application settings instance
    """
    return Settings()
