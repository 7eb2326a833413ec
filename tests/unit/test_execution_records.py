"""Tests for execution records and the execution registry."""

import asyncio
import re

import pytest

from agentOrchestrator.execution.models import (
    Execution,
    ExecutionStatus,
    ExecutionStep,
    StepAction,
    generate_delegation_thread_id,
    generate_execution_id,
)
from agentOrchestrator.execution.registry import ExecutionRegistry


def make_execution(execution_id="exec_1", **kwargs):
    return Execution(id=execution_id, agent_id="writer", thread_id="t1", user_id="u1", **kwargs)


class TestExecutionStatus:
    """测试执行状态单调性"""

    def test_running_to_terminal_once(self):
        execution = make_execution()
        assert execution.set_status(ExecutionStatus.COMPLETED)
        assert execution.status is ExecutionStatus.COMPLETED

        for status in (ExecutionStatus.FAILED, ExecutionStatus.CANCELLED, ExecutionStatus.RUNNING):
            assert not execution.set_status(status)
            assert execution.status is ExecutionStatus.COMPLETED

    def test_running_cannot_be_re_entered(self):
        execution = make_execution()
        assert not execution.set_status(ExecutionStatus.RUNNING)
        assert not execution.is_terminal

    def test_accepts_plain_values(self):
        execution = make_execution()
        assert execution.set_status("cancelled")
        assert execution.status is ExecutionStatus.CANCELLED

    def test_end_time_not_before_start(self):
        execution = make_execution()
        execution.mark_ended()
        first_end = execution.end_time
        execution.mark_ended()

        assert execution.end_time == first_end
        assert execution.end_time >= execution.start_time
        assert execution.metrics.execution_time_ms >= 0

    def test_folded_in_time_is_kept(self):
        execution = make_execution()
        execution.metrics.execution_time_ms = 5_000_000
        execution.mark_ended()
        assert execution.metrics.execution_time_ms == 5_000_000


class TestExecutionRecord:
    def test_root_defaults_to_self(self):
        assert make_execution().root_execution_id == "exec_1"
        child = make_execution("exec_2", parent_execution_id="exec_1", root_execution_id="exec_0")
        assert child.root_execution_id == "exec_0"

    def test_to_dict(self):
        execution = make_execution(input="hello")
        execution.add_step(ExecutionStep(agent="writer", action=StepAction.ROUTING, content="start"))
        data = execution.to_dict()

        assert data["status"] == "running"
        assert data["steps"][0]["action"] == "routing"
        assert data["metrics"]["delegations_count"] == 0
        assert data["end_time"] is None

    def test_id_formats(self):
        assert re.fullmatch(r"exec_\d+_[0-9a-f]{8}", generate_execution_id())
        assert re.fullmatch(r"delegation_\d+_[0-9a-f]{8}", generate_delegation_thread_id())
        assert generate_execution_id() != generate_execution_id()


class TestExecutionRegistry:
    """测试执行注册表"""

    def test_add_and_lookup(self):
        registry = ExecutionRegistry()
        execution = registry.add(make_execution())

        assert registry.get("exec_1") is execution
        assert "exec_1" in registry
        assert len(registry) == 1

    def test_duplicate_add_keeps_first(self):
        registry = ExecutionRegistry()
        first = registry.add(make_execution())
        assert registry.add(make_execution()) is first

    def test_list_active_skips_terminal(self):
        registry = ExecutionRegistry()
        registry.add(make_execution("a"))
        done = registry.add(make_execution("b"))
        done.set_status(ExecutionStatus.COMPLETED)

        assert [e.id for e in registry.list_active()] == ["a"]
        assert len(registry.list_all()) == 2

    @pytest.mark.asyncio
    async def test_eviction_after_grace(self):
        registry = ExecutionRegistry()
        registry.add(make_execution())
        registry.schedule_eviction("exec_1", 0.01)

        assert registry.get("exec_1") is not None
        await asyncio.sleep(0.05)
        assert registry.get("exec_1") is None

    @pytest.mark.asyncio
    async def test_zero_grace_evicts_now(self):
        registry = ExecutionRegistry()
        registry.add(make_execution())
        registry.schedule_eviction("exec_1", 0)
        assert registry.get("exec_1") is None

    @pytest.mark.asyncio
    async def test_pop_cancels_pending_eviction(self):
        registry = ExecutionRegistry()
        registry.add(make_execution())
        registry.schedule_eviction("exec_1", 0.01)
        registry.pop("exec_1")

        replacement = registry.add(make_execution())
        await asyncio.sleep(0.05)
        assert registry.get("exec_1") is replacement
