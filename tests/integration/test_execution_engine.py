"""Integration tests for the execution engine on real agent graphs."""

import asyncio

import pytest
from langchain_core.messages import HumanMessage, ToolMessage
from langgraph.errors import GraphRecursionError

from agentOrchestrator.agents.schema import AgentConfig
from agentOrchestrator.execution.engine import ExecutionEngine
from agentOrchestrator.execution.models import (
    Execution,
    ExecutionContext,
    ExecutionOptions,
    ExecutionStatus,
    StepAction,
)
from agentOrchestrator.graph.builder import build_agent_graph
from agentOrchestrator.persistence.checkpointer import build_checkpointer
from agentOrchestrator.persistence.interrupt_store import InMemoryInterruptStore
from agentOrchestrator.utils.error_handler import (
    ApprovalTimeoutError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    GraphExecutionError,
)
from agentOrchestrator.utils.resilience import AgentErrorHandler
from tests.fakes import FakeToolRuntime, ScriptedModelProvider, respond_when_pending, tool_call_message


MAILER = AgentConfig(
    id="mailer",
    name="Mailer",
    model="mailer-model",
    tools=("send_email", "lookup"),
    approval_required_tools=("send_email",),
    system_prompt="You send emails.",
)


class Harness:
    """One agent graph plus the engine that drives it."""

    def __init__(self, settings, scripts, tools=None, agent=MAILER):
        self.agent = agent
        self.provider = ScriptedModelProvider(scripts)
        self.runtime = FakeToolRuntime(tools or {})
        self.interrupt_store = InMemoryInterruptStore()
        self.error_handler = AgentErrorHandler()
        self.graph = build_agent_graph(
            agent,
            model_provider=self.provider,
            tool_runtime=self.runtime,
            checkpointer=build_checkpointer(),
            tool_specs=[{"name": name} for name in agent.tools],
        )
        self.engine = ExecutionEngine(self.interrupt_store, self.error_handler, settings)
        self.execution = Execution(id="exec_1", agent_id=agent.id, thread_id="thread_1", user_id="u1")

    async def run(self, text="Email Bob the report", options=None):
        context = ExecutionContext(
            thread_id="thread_1",
            user_id="u1",
            agent_id=self.agent.id,
            message_history=[HumanMessage(content=text)],
        )
        return await self.engine.run(self.agent, self.graph, context, self.execution, options)


class TestPlainRuns:
    """测试无中断的执行"""

    @pytest.mark.asyncio
    async def test_direct_answer(self, settings):
        harness = Harness(settings, {"mailer-model": ["Nothing to send."]})

        result = await harness.run()

        assert result.content == "Nothing to send."
        assert result.metadata["agent_id"] == "mailer"
        assert result.metadata["execution_id"] == "exec_1"
        assert result.tokens_used > 0
        assert harness.execution.messages[-1].content == "Nothing to send."
        assert harness.execution.metrics.tokens_used == result.tokens_used

        prompt = harness.provider.calls[0]["messages"]
        assert prompt[0].content == "You send emails."
        assert prompt[-1].content == "Email Bob the report"

    @pytest.mark.asyncio
    async def test_tool_loop(self, settings):
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("lookup", {"name": "Bob"}), "Bob is bob@example.com."]},
            tools={"lookup": lambda name: f"{name.lower()}@example.com"},
        )

        result = await harness.run()

        assert result.content == "Bob is bob@example.com."
        assert len(result.tool_calls) == 1
        assert harness.execution.metrics.tool_calls_count == 1
        assert harness.runtime.calls == [{"tool": "lookup", "args": {"name": "Bob"}}]
        tool_messages = [m for m in result.messages if isinstance(m, ToolMessage)]
        assert tool_messages[0].content == "bob@example.com"

    @pytest.mark.asyncio
    async def test_tool_failure_becomes_error_message(self, settings):
        def broken(name):
            raise RuntimeError("directory offline")

        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("lookup", {"name": "Bob"}), "I could not look Bob up."]},
            tools={"lookup": broken},
        )

        result = await harness.run()

        tool_messages = [m for m in result.messages if isinstance(m, ToolMessage)]
        assert tool_messages[0].content.startswith("Error:")
        assert "directory offline" in tool_messages[0].content
        assert result.content == "I could not look Bob up."

    @pytest.mark.asyncio
    async def test_streamed_tokens_are_forwarded(self, settings):
        async def stream(_messages):
            for piece in ("Hel", "lo", "!"):
                yield piece

        harness = Harness(settings, {"mailer-model": [lambda messages: stream(messages)]})
        tokens = []

        result = await harness.run(options=ExecutionOptions(on_token=tokens.append))

        assert tokens == ["Hel", "lo", "!"]
        assert result.content == "Hello!"

    @pytest.mark.asyncio
    async def test_history_with_stale_tool_results(self, settings):
        harness = Harness(settings, {"mailer-model": ["ok"]})
        context = ExecutionContext(
            thread_id="thread_1",
            user_id="u1",
            agent_id="mailer",
            message_history=[
                HumanMessage(content="earlier"),
                ToolMessage(content="stale", tool_call_id="gone"),
                HumanMessage(content="now"),
            ],
        )

        result = await harness.engine.run(MAILER, harness.graph, context, harness.execution)

        assert result.content == "ok"
        assert [m.content for m in result.messages] == ["ok"]
        sent = harness.provider.calls[0]["messages"]
        assert not any(isinstance(m, ToolMessage) for m in sent)


class TestInterrupts:
    """测试审批中断与恢复"""

    @pytest.mark.asyncio
    async def test_edit_resumes_with_new_args(self, settings):
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"}), "Sent."]},
            tools={"send_email": lambda to: f"sent to {to}"},
        )

        approver = asyncio.create_task(
            respond_when_pending(harness.interrupt_store, {"type": "edit", "args": {"to": "carol@example.com"}})
        )
        result = await harness.run()
        answered = await approver

        assert answered.status == "edited"
        assert result.content == "Sent."
        assert harness.runtime.calls == [{"tool": "send_email", "args": {"to": "carol@example.com"}}]
        assert await harness.interrupt_store.get("exec_1") is None

        execution = harness.execution
        assert execution.metrics.interrupts_count == 1
        interrupt_steps = [s for s in execution.steps if s.action is StepAction.INTERRUPT]
        assert len(interrupt_steps) == 1
        assert interrupt_steps[0].progress == 50
        assert interrupt_steps[0].metadata["action"] == "send_email"

    @pytest.mark.asyncio
    async def test_ignore_skips_the_tool(self, settings):
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"}), "Okay, not sending."]},
            tools={"send_email": lambda to: "sent"},
        )

        approver = asyncio.create_task(respond_when_pending(harness.interrupt_store, "ignore"))
        result = await harness.run()
        await approver

        assert harness.runtime.calls == []
        tool_messages = [m for m in result.messages if isinstance(m, ToolMessage)]
        assert "Operation cancelled by user" in tool_messages[0].content
        assert result.content == "Okay, not sending."

    @pytest.mark.asyncio
    async def test_approval_timeout(self, settings):
        settings.interrupts.approval_timeout_s = 0.05
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"})]},
            tools={"send_email": lambda to: "sent"},
        )

        with pytest.raises(ApprovalTimeoutError):
            await harness.run()

        record = await harness.interrupt_store.get("exec_1")
        assert record.status == "pending"
        assert harness.execution.status is ExecutionStatus.FAILED
        assert harness.runtime.calls == []

    @pytest.mark.asyncio
    async def test_approval_wait_does_not_spend_the_budget(self, settings):
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"}), "Sent."]},
            tools={"send_email": lambda to: "sent"},
        )

        async def slow_approver():
            await asyncio.sleep(0.3)
            return await respond_when_pending(harness.interrupt_store, "accept")

        approver = asyncio.create_task(slow_approver())
        result = await harness.run(options=ExecutionOptions(timeout_s=0.25))
        await approver

        assert result.content == "Sent."


class TestFailures:
    @pytest.mark.asyncio
    async def test_execution_timeout(self, settings):
        class SlowProvider:
            async def generate(self, model, messages, params):
                await asyncio.sleep(5)
                return "too late"

        harness = Harness(settings, {})
        harness.graph = build_agent_graph(MAILER, model_provider=SlowProvider(), checkpointer=build_checkpointer())

        with pytest.raises(ExecutionTimeoutError):
            await harness.run(options=ExecutionOptions(timeout_s=0.05))
        assert harness.execution.status is ExecutionStatus.FAILED
        assert harness.execution.metrics.error_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_execution_stops_at_next_event(self, settings):
        harness = Harness(settings, {"mailer-model": ["never used"]})
        harness.execution.set_status(ExecutionStatus.CANCELLED)

        with pytest.raises(ExecutionCancelledError):
            await harness.run()
        assert harness.execution.status is ExecutionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_timeout_message_keeps_fractional_limit(self, settings):
        class SlowProvider:
            async def generate(self, model, messages, params):
                await asyncio.sleep(5)
                return "too late"

        harness = Harness(settings, {})
        harness.graph = build_agent_graph(MAILER, model_provider=SlowProvider(), checkpointer=build_checkpointer())

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await harness.run(options=ExecutionOptions(timeout_s=0.05))
        assert "limit 0.05s" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_recursion_limit_becomes_graph_error(self, settings):
        settings.runtime.recursion_limit = 5
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("lookup", {"name": "Bob"})]},
            tools={"lookup": lambda name: "still looking"},
        )

        with pytest.raises(GraphExecutionError) as exc_info:
            await harness.run(options=ExecutionOptions(max_loops=100))

        assert isinstance(exc_info.value.__cause__, GraphRecursionError)
        assert exc_info.value.user_message.startswith("The agent took too many steps")
        assert harness.execution.status is ExecutionStatus.FAILED


class TestCheckpointCleanup:
    """测试图线程检查点的清理"""

    @staticmethod
    async def saved_threads(harness):
        return {item.config["configurable"]["thread_id"] async for item in harness.graph.checkpointer.alist(None)}

    @pytest.mark.asyncio
    async def test_finished_run_leaves_no_checkpoints(self, settings):
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("lookup", {"name": "Bob"}), "Found Bob."]},
            tools={"lookup": lambda name: "bob@example.com"},
        )

        await harness.run()
        await harness.run()

        assert await self.saved_threads(harness) == set()

    @pytest.mark.asyncio
    async def test_failed_run_leaves_no_checkpoints(self, settings):
        harness = Harness(settings, {"mailer-model": [RuntimeError("model exploded")]})

        with pytest.raises(RuntimeError):
            await harness.run()

        assert await self.saved_threads(harness) == set()

    @pytest.mark.asyncio
    async def test_approval_timeout_thread_is_kept_until_close(self, settings):
        settings.interrupts.approval_timeout_s = 0.05
        harness = Harness(
            settings,
            {"mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"})]},
            tools={"send_email": lambda to: "sent"},
        )

        with pytest.raises(ApprovalTimeoutError):
            await harness.run()

        kept = await self.saved_threads(harness)
        assert len(kept) == 1
        assert next(iter(kept)).startswith("thread_1::exec_1::")

        await harness.engine.close()
        assert await self.saved_threads(harness) == set()
