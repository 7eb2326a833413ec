"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from agentOrchestrator.config.settings import (  # noqa: E402
    CircuitBreakerSettings,
    InterruptSettings,
    RetrySettings,
    RuntimeSettings,
    Settings,
)
from tests.fakes import FakeClock, FakeSleep  # noqa: E402


@pytest.fixture
def settings():
    """Settings with short timeouts and fast polling."""
    return Settings(
        runtime=RuntimeSettings(
            execution_timeout_s=30,
            specialist_timeout_s=30,
            supervisor_timeout_s=45,
            tool_timeout_s=5,
            registry_grace_s=60,
            supervisor_agent_id="supervisor",
        ),
        retry=RetrySettings(max_attempts=3, base_delay_ms=1000, max_delay_ms=30000),
        circuit_breaker=CircuitBreakerSettings(failure_threshold=5, reset_timeout_ms=60000),
        interrupts=InterruptSettings(poll_interval_s=0.01, approval_timeout_s=2.0),
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock):
    return FakeSleep(fake_clock)
