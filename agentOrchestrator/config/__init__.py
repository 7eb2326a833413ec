"""Configuration exports."""

from .settings import (
    CircuitBreakerSettings,
    InterruptSettings,
    RetrySettings,
    RuntimeSettings,
    Settings,
    get_settings,
)

__all__ = [
    "CircuitBreakerSettings",
    "InterruptSettings",
    "RetrySettings",
    "RuntimeSettings",
    "Settings",
    "get_settings",
]
