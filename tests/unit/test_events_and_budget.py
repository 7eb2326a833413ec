"""Tests for the event bus and execution budgets."""

import asyncio

import pytest

from agentOrchestrator.execution.events import EventEmitter
from agentOrchestrator.execution.timeout import BUDGET_PRESETS, BudgetLimits, ExecutionBudget
from agentOrchestrator.utils.error_handler import ExecutionTimeoutError
from tests.fakes import FakeClock


class TestEventEmitter:
    """测试事件总线"""

    def test_listeners_run_in_order(self):
        events = EventEmitter()
        seen = []
        events.on("x", lambda p: seen.append(("a", p)))
        events.on("x", lambda p: seen.append(("b", p)))

        assert events.emit("x", 1) == 2
        assert seen == [("a", 1), ("b", 1)]

    def test_failing_listener_is_isolated(self):
        events = EventEmitter()
        seen = []

        def broken(_):
            raise RuntimeError("listener bug")

        events.on("x", broken)
        events.on("x", seen.append)
        events.emit("x", "payload")
        assert seen == ["payload"]

    def test_off_and_once(self):
        events = EventEmitter()
        seen = []
        events.once("x", seen.append)
        events.emit("x", 1)
        events.emit("x", 2)
        assert seen == [1]

        events.on("y", seen.append)
        events.off("y", seen.append)
        assert events.listener_count("y") == 0

    @pytest.mark.asyncio
    async def test_async_listener_is_scheduled(self):
        events = EventEmitter()
        seen = []

        async def listener(payload):
            seen.append(payload)

        events.on("x", listener)
        events.emit("x", "later")
        await asyncio.sleep(0)
        assert seen == ["later"]

    def test_remove_all_listeners(self):
        events = EventEmitter()
        events.on("x", print)
        events.on("y", print)
        events.remove_all_listeners("x")
        assert events.listener_count("x") == 0
        events.remove_all_listeners()
        assert events.listener_count("y") == 0


class TestExecutionBudget:
    """测试执行预算"""

    def test_paused_time_is_not_counted(self):
        clock = FakeClock()
        budget = ExecutionBudget.for_timeout(10, clock=clock)

        clock.advance(4)
        with budget.paused():
            clock.advance(100)
            assert budget.is_paused
        clock.advance(1)

        assert budget.elapsed() == pytest.approx(5)
        assert budget.remaining() == pytest.approx(5)
        assert not budget.expired

    def test_nested_pauses_resume_on_the_outermost(self):
        clock = FakeClock()
        budget = ExecutionBudget.for_timeout(10, clock=clock)

        budget.pause()
        budget.pause()
        clock.advance(50)
        budget.resume()
        clock.advance(50)
        assert budget.is_paused
        assert budget.elapsed() == 0

        budget.resume()
        budget.resume()
        clock.advance(3)
        assert not budget.is_paused
        assert budget.elapsed() == pytest.approx(3)

    def test_ensure_time_left_raises_when_spent(self):
        clock = FakeClock()
        budget = ExecutionBudget.for_timeout(2, clock=clock)
        assert budget.ensure_time_left() == pytest.approx(2)

        clock.advance(2)
        with pytest.raises(ExecutionTimeoutError):
            budget.ensure_time_left()

    def test_check_reports_first_exceeded_limit(self):
        clock = FakeClock()
        budget = ExecutionBudget(BudgetLimits(max_execution_s=60, max_tool_calls=2, max_agent_cycles=10), clock=clock)
        assert not budget.check().exceeded

        budget.record_tool_calls(2)
        status = budget.check()
        assert status.exceeded
        assert "Tool call limit" in status.reason

    def test_utilization_is_capped(self):
        clock = FakeClock()
        budget = ExecutionBudget(BUDGET_PRESETS["quick"], clock=clock)
        for _ in range(20):
            budget.record_agent_cycle()
        assert budget.utilization()["cycles"] == 100.0
        assert budget.check().exceeded

    def test_presets(self):
        assert BUDGET_PRESETS["quick"].max_execution_s < BUDGET_PRESETS["standard"].max_execution_s
        assert BUDGET_PRESETS["extended"].max_tool_calls == 50
