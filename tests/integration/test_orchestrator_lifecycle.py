"""Integration tests for orchestrator lifecycle operations."""

import asyncio

import pytest
from langchain_core.messages import HumanMessage

from agentOrchestrator.agents.schema import AgentConfig, AgentRole
from agentOrchestrator.execution.events import DELEGATION_FAILED, EXECUTION_CANCELLED, EXECUTION_STARTED
from agentOrchestrator.execution.models import ExecutionContext, ExecutionStatus
from agentOrchestrator.execution.request_context import get_current_execution_id, get_current_user_id
from agentOrchestrator.runtime.app import build_orchestrator
from agentOrchestrator.utils.error_handler import ExecutionCancelledError, ExecutionTimeoutError
from tests.fakes import FakeToolRuntime, ScriptedModelProvider, respond_when_pending, tool_call_message

AGENTS = [
    AgentConfig(id="supervisor", name="Supervisor", role=AgentRole.SUPERVISOR, model="supervisor-model"),
    AgentConfig(id="researcher", name="Researcher", model="researcher-model", tools=("whoami",)),
    AgentConfig(
        id="mailer",
        name="Mailer",
        model="mailer-model",
        tools=("send_email",),
        approval_required_tools=("send_email",),
    ),
]


def context_for(agent_id, text="hello", execution_id=None):
    metadata = {"executionId": execution_id} if execution_id else {}
    return ExecutionContext(
        thread_id="thread_1",
        user_id="u1",
        agent_id=agent_id,
        message_history=[HumanMessage(content=text)],
        metadata=metadata,
    )


@pytest.fixture
def orchestrator(settings):
    provider = ScriptedModelProvider({
        "researcher-model": ["Found it."],
        "mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"})],
        "supervisor-model": ["Hello."],
    })
    runtime = FakeToolRuntime({
        "send_email": lambda to: "queued",
    })
    return build_orchestrator(settings, model_provider=provider, tool_runtime=runtime, agents=AGENTS)


async def wait_for_pending(orchestrator, timeout_s=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while loop.time() < deadline:
        pending = await orchestrator.interrupt_store.get_all_pending()
        if pending:
            return pending[0]
        await asyncio.sleep(0.005)
    raise AssertionError("No interrupt became pending")


class TestCancellation:
    """测试取消执行"""

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_approval(self, orchestrator):
        cancelled = []
        orchestrator.on(EXECUTION_CANCELLED, cancelled.append)
        mailer = orchestrator.agent_registry.get_by_id("mailer")

        task = asyncio.create_task(orchestrator.execute_agent(mailer, context_for("mailer", execution_id="exec_c1")))
        await wait_for_pending(orchestrator)
        execution = orchestrator.get_execution_status("exec_c1")

        assert await orchestrator.cancel_execution("exec_c1") is True
        with pytest.raises(ExecutionCancelledError):
            await task

        assert execution.status is ExecutionStatus.CANCELLED
        assert execution.end_time is not None
        assert orchestrator.get_execution_status("exec_c1") is None
        assert len(cancelled) == 1
        assert await orchestrator.interrupt_store.get("exec_c1") is None

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self, orchestrator):
        researcher = orchestrator.agent_registry.get_by_id("researcher")
        await orchestrator.execute_agent(researcher, context_for("researcher", execution_id="exec_done"))

        assert await orchestrator.cancel_execution("exec_done") is False
        assert await orchestrator.cancel_execution("nope") is False
        assert orchestrator.get_execution_status("exec_done").status is ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active_and_clears_state(self, orchestrator):
        mailer = orchestrator.agent_registry.get_by_id("mailer")
        task = asyncio.create_task(orchestrator.execute_agent(mailer, context_for("mailer", execution_id="exec_c2")))
        await wait_for_pending(orchestrator)

        await orchestrator.shutdown()

        with pytest.raises(ExecutionCancelledError):
            await task
        assert orchestrator.get_active_executions() == []
        assert len(orchestrator.execution_registry) == 0
        assert orchestrator.graph_cache.get_stats().total_graphs == 0
        assert orchestrator.events.listener_count(EXECUTION_STARTED) == 0


class TestQueriesAndCaching:
    """测试查询与图缓存"""

    @pytest.mark.asyncio
    async def test_graph_is_compiled_once_per_agent(self, orchestrator):
        researcher = orchestrator.agent_registry.get_by_id("researcher")
        await orchestrator.execute_agent(researcher, context_for("researcher"))
        await orchestrator.execute_agent(researcher, context_for("researcher"))

        stats = orchestrator.graph_cache.get_stats()
        assert stats.misses == 1
        assert stats.hits == 1

    @pytest.mark.asyncio
    async def test_generated_execution_ids_and_metrics(self, orchestrator):
        started = []
        orchestrator.on(EXECUTION_STARTED, started.append)
        researcher = orchestrator.agent_registry.get_by_id("researcher")

        result = await orchestrator.execute_agent(researcher, context_for("researcher"))

        execution_id = result.metadata["execution_id"]
        assert execution_id.startswith("exec_")
        assert started[0].id == execution_id

        metrics = orchestrator.get_metrics()
        assert metrics["executions"]["by_status"] == {"completed": 1}
        assert metrics["graph_cache"]["stats"]["misses"] == 1
        assert metrics["agents"]["total"] == 3

    @pytest.mark.asyncio
    async def test_request_scope_is_visible_to_tools(self, settings):
        provider = ScriptedModelProvider({"researcher-model": [tool_call_message("whoami"), "Done."]})
        seen = []

        def whoami():
            seen.append((get_current_user_id(), get_current_execution_id()))
            return "ok"

        orchestrator = build_orchestrator(
            settings, model_provider=provider, tool_runtime=FakeToolRuntime({"whoami": whoami}), agents=AGENTS
        )
        researcher = orchestrator.agent_registry.get_by_id("researcher")

        await orchestrator.execute_agent(researcher, context_for("researcher", execution_id="exec_scope"))

        assert seen == [("u1", "exec_scope")]
        assert get_current_execution_id() is None

    @pytest.mark.asyncio
    async def test_warmup_and_invalidate(self, orchestrator):
        outcome = await orchestrator.warmup()

        assert outcome == {"supervisor": True, "researcher": True, "mailer": True}
        assert orchestrator.invalidate_agent("researcher") == 1
        assert not orchestrator.graph_cache.has("researcher")
        assert orchestrator.invalidate_agent() == 2

    @pytest.mark.asyncio
    async def test_finished_execution_is_evicted_after_grace(self, settings):
        settings.runtime.registry_grace_s = 0.01
        orchestrator = build_orchestrator(
            settings,
            model_provider=ScriptedModelProvider({"researcher-model": ["ok"]}),
            agents=AGENTS,
        )
        researcher = orchestrator.agent_registry.get_by_id("researcher")

        await orchestrator.execute_agent(researcher, context_for("researcher", execution_id="exec_e1"))
        assert orchestrator.get_execution_status("exec_e1") is not None

        await asyncio.sleep(0.05)
        assert orchestrator.get_execution_status("exec_e1") is None

    @pytest.mark.asyncio
    async def test_off_removes_listener(self, orchestrator):
        started = []
        orchestrator.on(EXECUTION_STARTED, started.append)
        orchestrator.off(EXECUTION_STARTED, started.append)

        researcher = orchestrator.agent_registry.get_by_id("researcher")
        await orchestrator.execute_agent(researcher, context_for("researcher"))
        assert started == []


class SlowResearcherProvider(ScriptedModelProvider):
    """Researcher replies only after ``delay_s``."""

    def __init__(self, scripts, delay_s):
        super().__init__(scripts)
        self.delay_s = delay_s

    async def generate(self, model, messages, params):
        if model == "researcher-model":
            await asyncio.sleep(self.delay_s)
        return await super().generate(model, messages, params)


async def wait_until(predicate, timeout_s=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.005)


class TestDelegationUnderParentBudget:
    """测试父执行预算与子委派的交互"""

    @pytest.mark.asyncio
    async def test_parent_timeout_cancels_the_running_child(self, settings):
        settings.runtime.supervisor_timeout_s = 0.2
        provider = SlowResearcherProvider({
            "supervisor-model": [tool_call_message("delegate_to_researcher", {"task": "Dig deep"}), "Done."],
            "researcher-model": ["Too late."],
        }, delay_s=1.0)
        orchestrator = build_orchestrator(settings, model_provider=provider, agents=AGENTS)
        started, cancelled, failed = [], [], []
        orchestrator.on(EXECUTION_STARTED, started.append)
        orchestrator.on(EXECUTION_CANCELLED, cancelled.append)
        orchestrator.on(DELEGATION_FAILED, failed.append)
        supervisor = orchestrator.agent_registry.get_by_id("supervisor")

        with pytest.raises(ExecutionTimeoutError):
            await orchestrator.execute_agent(supervisor, context_for("supervisor", execution_id="exec_p1"))

        child = next(e for e in started if e.agent_id == "researcher")
        await wait_until(lambda: cancelled and failed)

        assert child.status is ExecutionStatus.CANCELLED
        assert child.parent_execution_id == "exec_p1"
        assert child.end_time is not None
        assert orchestrator.get_active_executions() == []
        assert [e.id for e in cancelled] == [child.id]
        assert len(failed) == 1
        assert failed[0]["targetAgent"] == "researcher"
        assert orchestrator.get_execution_status("exec_p1").status is ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_child_approval_wait_pauses_the_parent_budget(self, settings):
        settings.runtime.supervisor_timeout_s = 0.3
        provider = ScriptedModelProvider({
            "supervisor-model": [tool_call_message("delegate_to_mailer", {"task": "Email Bob"}), "Mail is out."],
            "mailer-model": [tool_call_message("send_email", {"to": "bob@example.com"}), "Sent."],
        })
        runtime = FakeToolRuntime({"send_email": lambda to: "queued"})
        orchestrator = build_orchestrator(settings, model_provider=provider, tool_runtime=runtime, agents=AGENTS)
        supervisor = orchestrator.agent_registry.get_by_id("supervisor")

        async def slow_approver():
            await asyncio.sleep(0.6)
            return await respond_when_pending(orchestrator.interrupt_store, "accept")

        approver = asyncio.create_task(slow_approver())
        result = await orchestrator.execute_agent(supervisor, context_for("supervisor", execution_id="exec_p2"))
        await approver

        assert result.content == "Mail is out."
        assert orchestrator.get_execution_status("exec_p2").status is ExecutionStatus.COMPLETED
        assert runtime.calls == [{"tool": "send_email", "args": {"to": "bob@example.com"}}]
