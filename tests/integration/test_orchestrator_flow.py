"""
Integration Tests for Orchestrator Flow

Tests the full tick pipeline:
1. Telemetry collection and context building
2. Due-agent selection by schedule, enabled flag and priority
3. Watchdog-bounded parallel execution
4. Aggregation, conflict resolution and atomic publication
5. Action recording, dispatch and result sinks
"""

import asyncio
import threading
import time
from unittest.mock import Mock

import pytest

from network_agents.agents import QosOptimizationAgent
from network_agents.agents.decision_engine import DecisionEngine
from network_agents.config import AgentOverride, Config, OrchestratorConfig
from network_agents.core.enums import ActionStatus, ActionType
from network_agents.core.exceptions import AgentRegistrationError, UnknownAgentError
from network_agents.core.models import (
    TIMED_OUT_ERROR,
    AgentResult,
    ConnectivityMetrics,
    DeviceStatus,
    NetworkData,
    TelemetrySnapshot,
)
from network_agents.orchestration import SUPERSEDED_REASON, StaticTelemetrySource, TickReport
from network_agents.registry import create_default_agents
from tests.conftest import StubAgent, propose

TARGET = "connectivity-service/+33612345678"


async def run_ticks(orchestrator, times):
    return [await orchestrator.run_tick(now) for now in times]


# ============================================================================
# Collaborators
# ============================================================================

class FlakyTelemetry:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.fail = True
        self.calls = 0

    def collect(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("telemetry backend unreachable")
        return self.snapshot


class RecordingDispatcher:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, action, ledger):
        self.dispatched.append(action.action_id)
        ledger.update_status(action.action_id, ActionStatus.EXECUTING)
        ledger.update_status(action.action_id, ActionStatus.SUCCESS, result={"applied": True})


class ExplodingDispatcher:
    def dispatch(self, action, ledger):
        raise RuntimeError("connectivity-service returned 503")


class AsyncDispatcher:
    async def dispatch(self, action, ledger):
        ledger.update_status(action.action_id, ActionStatus.EXECUTING)
        await asyncio.sleep(0.01)
        ledger.update_status(action.action_id, ActionStatus.SUCCESS)


class HangingAgent(StubAgent):
    async def decide(self, context):
        await asyncio.sleep(5)
        return AgentResult(success=True)


class AsyncAgent(StubAgent):
    async def decide(self, context):
        self.calls.append(context)
        return AgentResult(success=True)


class GatedAgent(StubAgent):
    """Proposes an action; from the second tick on it blocks until cancelled."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.blocked = asyncio.Event()

    async def decide(self, context):
        self.calls.append(context)
        if context.tick_number > 1:
            self.blocked.set()
            await asyncio.sleep(30)
        return propose(TARGET)(context)


# ============================================================================
# Scheduling
# ============================================================================

class TestScheduling:

    @pytest.mark.asyncio
    async def test_disabled_agent_is_never_executed(self, make_orchestrator):
        disabled = StubAgent("disabled", execution_interval=1.0, enabled=False)
        orchestrator = make_orchestrator([disabled])

        reports = await run_ticks(orchestrator, range(1, 11))

        assert disabled.calls == []
        assert all(r.results == () for r in reports)
        assert "disabled" not in orchestrator.aggregator.previous_results

    @pytest.mark.asyncio
    async def test_thirty_second_agent_runs_twice_in_65_seconds(self, make_orchestrator):
        agent = StubAgent("qos", priority=8, execution_interval=30.0)
        orchestrator = make_orchestrator([agent])

        await run_ticks(orchestrator, range(0, 66, 5))

        assert len(agent.calls) == 2
        assert orchestrator.next_due("qos") == 90.0

    @pytest.mark.asyncio
    async def test_late_tick_runs_once_and_stays_on_grid(self, make_orchestrator):
        agent = StubAgent("monitor", execution_interval=10.0)
        orchestrator = make_orchestrator([agent])

        await orchestrator.run_tick(55.0)
        await orchestrator.run_tick(56.0)

        assert len(agent.calls) == 1
        assert orchestrator.next_due("monitor") == 60.0

    @pytest.mark.asyncio
    async def test_concurrency_limit_defers_lower_priority(self, make_orchestrator, make_config):
        high = StubAgent("high", priority=9, execution_interval=10.0)
        low = StubAgent("low", priority=1, execution_interval=10.0)
        orchestrator = make_orchestrator([low, high], config=make_config(max_concurrent_agents=1))

        first = await orchestrator.run_tick(10.0)
        second = await orchestrator.run_tick(11.0)

        assert [r.agent_id for r in first.results] == ["high"]
        assert [r.agent_id for r in second.results] == ["low"]

    @pytest.mark.asyncio
    async def test_all_agents_of_a_tick_share_one_context(self, make_orchestrator):
        a = StubAgent("a", execution_interval=5.0)
        b = StubAgent("b", execution_interval=5.0)
        orchestrator = make_orchestrator([a, b], context_config={"region": "eu-west"})

        await run_ticks(orchestrator, [5.0, 10.0])

        assert a.calls[0] is b.calls[0]
        assert [c.tick_number for c in a.calls] == [1, 2]
        assert a.calls[0] is not a.calls[1]
        assert a.calls[0].config == {"region": "eu-west"}
        assert a.calls[0].phone_number == "+33612345678"


# ============================================================================
# Failure containment
# ============================================================================

class TestFailureContainment:

    @pytest.mark.asyncio
    async def test_always_failing_agent_does_not_affect_others(self, make_orchestrator):
        def explode(context):
            raise RuntimeError("model unavailable")

        failing = StubAgent("failing", priority=9, execution_interval=5.0, decide=explode)
        healthy = StubAgent("healthy", priority=1, execution_interval=5.0)
        orchestrator = make_orchestrator([failing, healthy])

        reports = await run_ticks(orchestrator, [5.0, 10.0, 15.0])

        for report in reports:
            by_agent = {r.agent_id: r for r in report.results}
            assert not by_agent["failing"].success
            assert by_agent["failing"].error == "model unavailable"
            assert by_agent["healthy"].success
        assert len(healthy.calls) == 3
        assert orchestrator.aggregator.previous_results["failing"].error == "model unavailable"

    @pytest.mark.asyncio
    async def test_watchdog_times_out_hanging_agent(self, make_orchestrator, make_config):
        slow = HangingAgent("slow", execution_interval=5.0)
        fast = StubAgent("fast", execution_interval=5.0)
        orchestrator = make_orchestrator(
            [slow, fast], config=make_config(agent_timeout_seconds=0.1)
        )

        report = await orchestrator.run_tick(5.0)
        by_agent = {r.agent_id: r for r in report.results}

        assert not by_agent["slow"].success
        assert by_agent["slow"].error == TIMED_OUT_ERROR
        assert by_agent["slow"].execution_time_ms > 0
        assert by_agent["fast"].success
        assert orchestrator.metrics.registry.get_sample_value(
            "network_agents_agent_executions_total", {"agent_id": "slow", "outcome": "timeout"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_telemetry_failure_skips_tick_without_advancing(self, make_orchestrator, snapshot):
        telemetry = FlakyTelemetry(snapshot)
        agent = StubAgent("monitor", execution_interval=10.0)
        orchestrator = make_orchestrator([agent], telemetry=telemetry)

        assert await orchestrator.run_tick(10.0) is None
        assert agent.calls == []
        assert orchestrator.next_due("monitor") == 10.0
        assert orchestrator.tick_count == 0

        telemetry.fail = False
        report = await orchestrator.run_tick(10.0)

        assert report.tick_number == 1
        assert len(agent.calls) == 1

    @pytest.mark.asyncio
    async def test_globally_disabled_orchestrator_does_nothing(self, make_orchestrator, make_config):
        telemetry = Mock()
        agent = StubAgent("monitor", execution_interval=1.0)
        orchestrator = make_orchestrator(
            [agent], telemetry=telemetry, config=make_config(enabled=False)
        )

        assert await orchestrator.run_tick(5.0) is None
        telemetry.collect.assert_not_called()
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_break_tick(self, make_orchestrator):
        received = []

        def broken_sink(report):
            raise ValueError("sink down")

        orchestrator = make_orchestrator(
            [StubAgent("a", execution_interval=5.0)],
            result_sinks=[broken_sink, received.append],
        )
        report = await orchestrator.run_tick(5.0)

        assert isinstance(report, TickReport)
        assert received == [report]

    @pytest.mark.asyncio
    async def test_hung_sync_agent_does_not_starve_telemetry(self, make_orchestrator, make_config):
        release = threading.Event()

        def block(context):
            release.wait(10)
            return AgentResult(success=True)

        hung = StubAgent("hung", priority=1, execution_interval=100.0, decide=block)
        responsive = AsyncAgent("responsive", execution_interval=1.0)
        orchestrator = make_orchestrator(
            [hung, responsive],
            config=make_config(max_workers=1, agent_timeout_seconds=0.2),
        )

        try:
            first = await orchestrator.run_tick(100.0)
            second = await asyncio.wait_for(orchestrator.run_tick(101.0), timeout=2.0)
        finally:
            release.set()

        assert {r.agent_id: r.error for r in first.results} == {
            "responsive": None, "hung": TIMED_OUT_ERROR,
        }
        assert second.tick_number == 2
        assert {r.agent_id: r for r in second.results}["responsive"].success

    @pytest.mark.asyncio
    async def test_slow_telemetry_is_a_tick_failure(self, make_orchestrator, make_config, snapshot):
        release = threading.Event()

        class SlowTelemetry:
            def collect(self):
                release.wait(5)
                return snapshot

        agent = StubAgent("monitor", execution_interval=10.0)
        orchestrator = make_orchestrator(
            [agent], telemetry=SlowTelemetry(), config=make_config(telemetry_timeout_seconds=0.1)
        )

        try:
            assert await orchestrator.run_tick(10.0) is None
        finally:
            release.set()

        assert agent.calls == []
        assert orchestrator.next_due("monitor") == 10.0
        assert orchestrator.metrics.registry.get_sample_value(
            "network_agents_ticks_total", {"outcome": "telemetry_failed"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_invalid_runtime_interval_only_affects_that_agent(self, make_orchestrator):
        bad = StubAgent("bad", execution_interval=1.0)
        good = StubAgent("good", execution_interval=1.0)
        orchestrator = make_orchestrator([bad, good])

        await orchestrator.run_tick(1.0)
        bad.execution_interval = 0
        reports = await run_ticks(orchestrator, [2.0, 3.0])

        assert len(good.calls) == 3
        assert len(bad.calls) == 1
        for report in reports:
            rejected = {r.agent_id: r for r in report.results}["bad"]
            assert not rejected.success
            assert rejected.error.startswith("invalid execution interval")

        bad.execution_interval = 1.0
        recovered = await orchestrator.run_tick(4.0)
        assert {r.agent_id: r for r in recovered.results}["bad"].success
        assert len(bad.calls) == 2


# ============================================================================
# Shared context and conflicts
# ============================================================================

class TestPublication:

    @pytest.mark.asyncio
    async def test_previous_results_are_from_the_previous_tick_only(self, make_orchestrator):
        producer = StubAgent(
            "producer", priority=9, execution_interval=1.0,
            decide=lambda ctx: AgentResult(success=True, metadata={"tick": ctx.tick_number}),
        )
        observed = []

        def observe(ctx):
            previous = ctx.previous_result("producer")
            observed.append(previous.metadata["tick"] if previous else None)
            return AgentResult(success=True)

        consumer = StubAgent("consumer", priority=1, execution_interval=1.0, decide=observe)
        orchestrator = make_orchestrator([producer, consumer])

        await run_ticks(orchestrator, [1.0, 2.0, 3.0])

        assert observed == [None, 1, 2]
        assert orchestrator.aggregator.published_tick == 3

    @pytest.mark.asyncio
    async def test_context_is_isolated_from_later_publication(self, make_orchestrator):
        agent = StubAgent("a", execution_interval=1.0)
        orchestrator = make_orchestrator([agent])

        await run_ticks(orchestrator, [1.0, 2.0])

        first_context = agent.calls[0]
        assert first_context.previous_results == {}
        assert set(agent.calls[1].previous_results) == {"a"}

    @pytest.mark.asyncio
    async def test_agents_cannot_alter_the_shared_context(self, make_orchestrator):
        rejected = []

        def write(ctx):
            for mutate in (
                lambda: ctx.state.__setitem__("injected", True),
                lambda: ctx.previous_results.clear(),
                lambda: ctx.config.update(region="us-east"),
            ):
                try:
                    mutate()
                except (TypeError, AttributeError):
                    rejected.append(ctx.tick_number)
            return AgentResult(success=True)

        observed = []

        def read(ctx):
            observed.append((dict(ctx.state), len(ctx.previous_results), dict(ctx.config)))
            return AgentResult(success=True)

        writer = StubAgent("writer", priority=9, execution_interval=1.0, decide=write)
        reader = StubAgent("reader", priority=1, execution_interval=1.0, decide=read)
        orchestrator = make_orchestrator([writer, reader], context_config={"region": "eu-west"})

        await run_ticks(orchestrator, [1.0, 2.0])

        assert observed[1] == ({}, 2, {"region": "eu-west"})
        assert rejected == [1, 1, 1, 2, 2, 2]

    @pytest.mark.asyncio
    async def test_priority_conflict_cancels_lower_priority_action(self, make_orchestrator):
        low = StubAgent("low-priority", priority=5, execution_interval=10.0, decide=propose(TARGET))
        high = StubAgent("high-priority", priority=9, execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([low, high])

        report = await orchestrator.run_tick(10.0)
        by_agent = {r.agent_id: r for r in report.results}
        winner = by_agent["high-priority"].actions[0]
        loser = by_agent["low-priority"].actions[0]

        assert winner.status == ActionStatus.PENDING
        assert loser.status == ActionStatus.CANCELLED
        assert loser.reason == SUPERSEDED_REASON
        assert orchestrator.ledger.get(winner.action_id).status == ActionStatus.PENDING
        assert orchestrator.ledger.get(loser.action_id).status == ActionStatus.CANCELLED
        published = orchestrator.aggregator.previous_results["low-priority"]
        assert published.actions[0].status == ActionStatus.CANCELLED


# ============================================================================
# Action dispatch
# ============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    async def test_pending_actions_are_dispatched_once(self, make_orchestrator):
        dispatcher = RecordingDispatcher()
        agent = StubAgent("qos", execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([agent], dispatcher=dispatcher)

        report = await orchestrator.run_tick(10.0)
        action_id = report.dispatched_action_ids[0]

        assert dispatcher.dispatched == [action_id]
        assert orchestrator.ledger.get(action_id).status == ActionStatus.SUCCESS

        await orchestrator.run_tick(11.0)
        assert dispatcher.dispatched == [action_id]

    @pytest.mark.asyncio
    async def test_sinks_see_the_dispatch_outcome(self, make_orchestrator):
        seen = []

        def sink(report):
            seen.append([
                orchestrator.ledger.get(action_id).status for action_id in report.dispatched_action_ids
            ])

        agent = StubAgent("qos", execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator(
            [agent], dispatcher=RecordingDispatcher(), result_sinks=[sink]
        )

        await orchestrator.run_tick(10.0)

        assert seen == [[ActionStatus.SUCCESS]]

    @pytest.mark.asyncio
    async def test_dispatcher_error_marks_action_failed(self, make_orchestrator):
        agent = StubAgent("qos", execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([agent], dispatcher=ExplodingDispatcher())

        report = await orchestrator.run_tick(10.0)
        action = orchestrator.ledger.get(report.dispatched_action_ids[0])

        assert action.status == ActionStatus.FAILED
        assert action.error == "connectivity-service returned 503"

    @pytest.mark.asyncio
    async def test_async_dispatcher_completes_on_stop(self, make_orchestrator):
        agent = StubAgent("qos", execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([agent], dispatcher=AsyncDispatcher())

        report = await orchestrator.run_tick(10.0)
        await orchestrator.stop()

        action = orchestrator.ledger.get(report.dispatched_action_ids[0])
        assert action.status == ActionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_without_dispatcher_actions_stay_pending(self, make_orchestrator):
        agent = StubAgent("qos", execution_interval=10.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([agent])

        report = await orchestrator.run_tick(10.0)

        assert report.dispatched_action_ids == ()
        assert len(orchestrator.ledger.by_status(ActionStatus.PENDING)) == 1


# ============================================================================
# Registration and runtime configuration
# ============================================================================

class TestRegistration:

    def test_duplicate_agent_id_is_rejected(self, make_orchestrator):
        orchestrator = make_orchestrator([StubAgent("a")])
        with pytest.raises(AgentRegistrationError):
            orchestrator.register(StubAgent("a"))

    def test_non_positive_interval_is_rejected(self, make_orchestrator):
        with pytest.raises(AgentRegistrationError):
            make_orchestrator([StubAgent("a", execution_interval=0)])

    def test_object_without_agent_surface_is_rejected(self, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(AgentRegistrationError):
            orchestrator.register(object())

    def test_agents_are_listed_by_priority(self, make_orchestrator):
        orchestrator = make_orchestrator([
            StubAgent("b", priority=5), StubAgent("a", priority=5), StubAgent("c", priority=9),
        ])
        assert [a.agent_id for a in orchestrator.agents] == ["c", "a", "b"]

    def test_config_overrides_apply_at_registration(self, make_orchestrator):
        config = Config(
            orchestrator=OrchestratorConfig(),
            agents={"a": AgentOverride(enabled=False, priority=1, execution_interval=7.0)},
        )
        agent = StubAgent("a", priority=9, execution_interval=30.0)
        orchestrator = make_orchestrator([agent], config=config)

        assert agent.enabled is False
        assert agent.priority == 1
        assert orchestrator.next_due("a") == 7.0

    @pytest.mark.asyncio
    async def test_reconfigure_at_runtime(self, make_orchestrator, clock):
        agent = StubAgent("a", execution_interval=30.0)
        orchestrator = make_orchestrator([agent])

        clock.advance(12.0)
        orchestrator.reconfigure("a", execution_interval=5.0)
        assert orchestrator.next_due("a") == 17.0

        orchestrator.reconfigure("a", enabled=False)
        await orchestrator.run_tick(20.0)
        assert agent.calls == []

        orchestrator.reconfigure("a", enabled=True)
        await orchestrator.run_tick(21.0)
        assert len(agent.calls) == 1

    @pytest.mark.asyncio
    async def test_apply_config_reapplies_overrides(self, make_orchestrator):
        agent = StubAgent("a", priority=5, execution_interval=5.0)
        orchestrator = make_orchestrator([agent])

        orchestrator.apply_config(Config(
            orchestrator=OrchestratorConfig(enabled=False),
            agents={"a": AgentOverride(priority=2)},
        ))

        assert agent.priority == 2
        assert agent.execution_interval == 5.0
        assert await orchestrator.run_tick(5.0) is None

    def test_unknown_agent(self, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(UnknownAgentError):
            orchestrator.reconfigure("missing", enabled=False)
        with pytest.raises(UnknownAgentError):
            orchestrator.unregister("missing")

    @pytest.mark.asyncio
    async def test_unregistered_agent_stops_running(self, make_orchestrator):
        agent = StubAgent("a", execution_interval=5.0)
        orchestrator = make_orchestrator([agent])

        await orchestrator.run_tick(5.0)
        orchestrator.unregister("a")
        await orchestrator.run_tick(10.0)

        assert len(agent.calls) == 1


# ============================================================================
# Built-in agents end to end
# ============================================================================

class TestBuiltinAgents:

    @pytest.mark.asyncio
    async def test_disconnected_device_yields_qos_adjustment(self, make_orchestrator):
        snapshot = TelemetrySnapshot(
            network_data=NetworkData(connectivity=ConnectivityMetrics(is_connected=False)),
            phone_number="+33612345678",
        )
        orchestrator = make_orchestrator(
            [QosOptimizationAgent(decision_engine=DecisionEngine(0.7))],
            telemetry=StaticTelemetrySource(snapshot),
        )

        report = await orchestrator.run_tick(30.0)
        qos = {r.agent_id: r for r in report.results}["qos-optimization-agent"]

        assert qos.success
        assert qos.confidence == pytest.approx(0.9)
        assert len(qos.actions) == 1
        assert qos.actions[0].action_type == ActionType.QOS_ADJUSTMENT.value
        assert qos.actions[0].status == ActionStatus.PENDING
        assert orchestrator.ledger.get(qos.actions[0].action_id).target == TARGET

    @pytest.mark.asyncio
    async def test_device_agent_chains_on_monitoring_result(self, make_orchestrator):
        snapshot = TelemetrySnapshot(
            network_data=NetworkData(device_status=DeviceStatus(device_id="dev-1", is_active=False)),
            phone_number="+33612345678",
        )
        orchestrator = make_orchestrator(
            create_default_agents(DecisionEngine(0.7)),
            telemetry=StaticTelemetrySource(snapshot),
        )

        await orchestrator.run_tick(10.0)
        report = await orchestrator.run_tick(120.0)
        device = {r.agent_id: r for r in report.results}["device-management-agent"]

        assert device.metrics["corroborated"] is True
        assert device.confidence == pytest.approx(1.0)
        assert device.actions[0].action_type == ActionType.DEVICE_SWAP.value

    @pytest.mark.asyncio
    async def test_emergency_qos_outranks_regular_adjustment(self, make_orchestrator):
        snapshot = TelemetrySnapshot(
            network_data=NetworkData(connectivity=ConnectivityMetrics(is_connected=False)),
            phone_number="+33612345678",
        )
        orchestrator = make_orchestrator(
            create_default_agents(DecisionEngine(0.7)),
            telemetry=StaticTelemetrySource(snapshot),
        )

        report = await orchestrator.run_tick(30.0)
        by_agent = {r.agent_id: r for r in report.results}
        emergency = by_agent["emergency-connectivity-agent"].actions[0]
        adjustment = by_agent["qos-optimization-agent"].actions[0]

        assert emergency.action_type == ActionType.EMERGENCY_QOS.value
        assert emergency.target == adjustment.target == TARGET
        assert orchestrator.ledger.get(emergency.action_id).status == ActionStatus.PENDING
        assert orchestrator.ledger.get(adjustment.action_id).status == ActionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_emergency_signalled_through_context_state(self, make_orchestrator):
        snapshot = TelemetrySnapshot(phone_number="+33612345678", state={"critical": True})
        orchestrator = make_orchestrator(
            create_default_agents(DecisionEngine(0.7)),
            telemetry=StaticTelemetrySource(snapshot),
        )

        report = await orchestrator.run_tick(10.0)
        by_agent = {r.agent_id: r for r in report.results}

        assert set(by_agent) == {"emergency-connectivity-agent", "network-monitoring-agent"}
        emergency = by_agent["emergency-connectivity-agent"]
        assert emergency.metadata == {"emergency_mode": True, "triggered_by": "state"}
        assert [a.action_type for a in emergency.actions] == [ActionType.EMERGENCY_QOS.value]


# ============================================================================
# On-demand runs and execution history
# ============================================================================

class TestOnDemandRuns:

    @pytest.mark.asyncio
    async def test_run_outside_the_schedule(self, make_orchestrator):
        agent = StubAgent("a", execution_interval=30.0)
        orchestrator = make_orchestrator([agent])

        result = await orchestrator.run_agent("a")

        assert result.success
        assert len(agent.calls) == 1
        assert orchestrator.next_due("a") == 30.0
        assert orchestrator.aggregator.published_tick is None
        assert orchestrator.execution_history("+33612345678") == (result,)

    @pytest.mark.asyncio
    async def test_actions_are_recorded_and_dispatched(self, make_orchestrator):
        dispatcher = RecordingDispatcher()
        agent = StubAgent("qos", execution_interval=30.0, decide=propose(TARGET))
        orchestrator = make_orchestrator([agent], dispatcher=dispatcher)

        result = await orchestrator.run_agent("qos")
        action_id = result.actions[0].action_id

        assert dispatcher.dispatched == [action_id]
        assert orchestrator.ledger.get(action_id).status == ActionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_run_for_a_given_subject(self, make_orchestrator):
        agent = StubAgent("a", execution_interval=30.0)
        orchestrator = make_orchestrator([agent])

        await orchestrator.run_agent("a", TelemetrySnapshot(device_id="dev-9"))

        assert agent.calls[0].subject == "dev-9"
        assert len(orchestrator.execution_history("dev-9")) == 1
        assert orchestrator.execution_history("+33612345678") == ()

    @pytest.mark.asyncio
    async def test_unknown_agent_is_rejected(self, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(UnknownAgentError):
            await orchestrator.run_agent("missing")

    @pytest.mark.asyncio
    async def test_disabled_orchestrator_refuses(self, make_orchestrator, make_config):
        agent = StubAgent("a")
        orchestrator = make_orchestrator([agent], config=make_config(enabled=False))

        result = await orchestrator.run_agent("a")

        assert not result.success
        assert result.error == "orchestrator disabled"
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_telemetry_failure_is_reported(self, make_orchestrator, snapshot):
        agent = StubAgent("a")
        orchestrator = make_orchestrator([agent], telemetry=FlakyTelemetry(snapshot))

        result = await orchestrator.run_agent("a")

        assert not result.success
        assert result.error.startswith("telemetry collection failed")
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_disabled_agent_is_skipped(self, make_orchestrator):
        agent = StubAgent("a", enabled=False)
        orchestrator = make_orchestrator([agent])

        result = await orchestrator.run_agent("a")

        assert result.skipped
        assert agent.calls == []


class TestExecutionHistory:

    @pytest.mark.asyncio
    async def test_ticks_feed_the_subject_history(self, make_orchestrator):
        a = StubAgent("a", execution_interval=5.0)
        b = StubAgent("b", execution_interval=10.0)
        orchestrator = make_orchestrator([a, b])

        reports = await run_ticks(orchestrator, [5.0, 10.0])

        assert [r.subject for r in reports] == ["+33612345678", "+33612345678"]
        assert len(orchestrator.execution_history("+33612345678")) == 3
        assert len(orchestrator.execution_history("+33612345678", "a")) == 2

    @pytest.mark.asyncio
    async def test_history_is_bounded_per_subject(self, make_orchestrator, make_config):
        agent = StubAgent("a", execution_interval=1.0)
        orchestrator = make_orchestrator([agent], config=make_config(history_size=2))

        await run_ticks(orchestrator, [1.0, 2.0, 3.0])

        assert len(orchestrator.execution_history("+33612345678")) == 2


# ============================================================================
# Lifecycle
# ============================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_loop_runs_ticks_until_stopped(self, make_orchestrator, make_config):
        agent = StubAgent("a", execution_interval=0.05)
        orchestrator = make_orchestrator(
            [agent],
            config=make_config(tick_seconds=0.05, shutdown_grace_seconds=1.0),
            clock=time.monotonic,
        )

        async with orchestrator:
            assert orchestrator.running
            await asyncio.sleep(0.4)

        assert not orchestrator.running
        assert orchestrator.tick_count >= 2
        assert len(agent.calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_releases_worker_pool_and_ticks_recreate_it(self, make_orchestrator):
        agent = StubAgent("a", execution_interval=5.0)
        orchestrator = make_orchestrator([agent])

        await orchestrator.stop()
        assert orchestrator._executor is None

        report = await orchestrator.run_tick(5.0)
        assert report.results[0].success

    @pytest.mark.asyncio
    async def test_stop_after_grace_does_not_publish_the_cancelled_tick(
        self, make_orchestrator, make_config, clock
    ):
        agent = GatedAgent("gated", execution_interval=5.0)
        orchestrator = make_orchestrator(
            [agent],
            config=make_config(
                agent_timeout_seconds=60.0, shutdown_grace_seconds=0.05, tick_seconds=0.05
            ),
        )
        await orchestrator.run_tick(5.0)
        published = orchestrator.aggregator.previous_results
        history = orchestrator.execution_history("+33612345678")

        clock.advance(10.0)
        await orchestrator.start()
        await asyncio.wait_for(agent.blocked.wait(), timeout=1.0)
        await orchestrator.stop()

        assert not orchestrator.running
        assert orchestrator.aggregator.published_tick == 1
        assert orchestrator.aggregator.previous_results is published
        assert len(orchestrator.ledger) == 1
        assert orchestrator.execution_history("+33612345678") == history

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_orchestrator):
        orchestrator = make_orchestrator()
        await orchestrator.stop()
        await orchestrator.start()
        await orchestrator.stop()
        await orchestrator.stop()
        assert not orchestrator.running
