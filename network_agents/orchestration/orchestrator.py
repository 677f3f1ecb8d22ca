"""
Orchestrator

Owns the registered agents, their schedules and the worker pool, and drives ticks:
- One Context per tick, built from the telemetry collaborator
- Parallel execution of every due, enabled agent (asyncio.gather) under a watchdog
- Aggregation and atomic publication of previous_results
- Recording of proposed actions and hand-off to the action dispatcher
- Per-subject execution history and on-demand runs of a single agent
"""

import asyncio
import contextlib
import copy
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict

from ..config import AgentOverride, Config, get_config
from ..core.agent import Agent
from ..core.enums import ActionStatus, ExecutionOutcome
from ..core.exceptions import AgentRegistrationError, UnknownAgentError
from ..core.harness import ExecutionHarness
from ..core.models import AgentContext, AgentResult, TelemetrySnapshot
from ..observability.metrics import OrchestratorMetrics
from ..observability.structured_logging import LogContext, get_logger
from ..observability.tracing import get_tracer
from .aggregator import AggregationResult, ResultAggregator
from .collaborators import ActionDispatcher, ResultSink, TelemetrySource
from .history import ExecutionHistory
from .lifecycle import ActionLedger
from .scheduler import ScheduleEntry

logger = get_logger(__name__)


class TickReport(BaseModel):
    """Outcome of one completed tick, handed to the result sinks."""
    model_config = ConfigDict(frozen=True)

    tick_number: int
    subject: Optional[str] = None
    started_at: datetime
    duration_ms: float
    results: Tuple[AgentResult, ...] = ()
    aggregation: AggregationResult
    dispatched_action_ids: Tuple[str, ...] = ()


@dataclass
class _AgentSlot:
    agent: Agent
    schedule: ScheduleEntry


class Orchestrator:
    """
    Drives independently timed agents over one evolving context.

    Ticks never overlap: tick N is aggregated and published before tick N+1
    collects telemetry, so every agent of tick N+1 sees exactly tick N's
    merged previous_results.
    """

    def __init__(
        self,
        telemetry: TelemetrySource,
        agents: Iterable[Agent] = (),
        *,
        dispatcher: Optional[ActionDispatcher] = None,
        result_sinks: Iterable[ResultSink] = (),
        config: Optional[Config] = None,
        aggregator: Optional[ResultAggregator] = None,
        ledger: Optional[ActionLedger] = None,
        metrics: Optional[OrchestratorMetrics] = None,
        history: Optional[ExecutionHistory] = None,
        clock: Callable[[], float] = time.monotonic,
        context_config: Optional[Mapping[str, Any]] = None,
    ):
        self._config = config or get_config()
        self.settings = self._config.orchestrator
        self.telemetry = telemetry
        self.dispatcher = dispatcher
        self.result_sinks: List[ResultSink] = list(result_sinks)
        self.aggregator = aggregator or ResultAggregator()
        self.ledger = ActionLedger() if ledger is None else ledger
        self.metrics = metrics or OrchestratorMetrics()
        if history is None:
            history = ExecutionHistory(self.settings.history_size, self.settings.history_subjects)
        self.history = history
        self.context_config: Dict[str, Any] = dict(context_config or {})

        self._clock = clock
        self._slots: Dict[str, _AgentSlot] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._harness = ExecutionHarness()
        self._ensure_executor()
        self._tracer = get_tracer()
        self._tick_lock = asyncio.Lock()
        self._tick_count = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._dispatch_tasks: Set[asyncio.Task] = set()

        for agent in agents:
            self.register(agent)

    # ------------------------------------------------------------------
    # Registration and runtime configuration
    # ------------------------------------------------------------------

    @property
    def agents(self) -> List[Agent]:
        """Registered agents in dispatch order (priority desc, then id)."""
        slots = sorted(self._slots.values(), key=lambda s: (-s.agent.priority, s.agent.agent_id))
        return [slot.agent for slot in slots]

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def register(self, agent: Agent) -> None:
        """
        Register an agent. Its first run is due one interval after registration.

        Raises:
            AgentRegistrationError: duplicate id, object not implementing the
                Agent protocol, or non-positive interval
        """
        if not isinstance(agent, Agent):
            raise AgentRegistrationError(f"{agent!r} does not implement the Agent protocol")
        if agent.agent_id in self._slots:
            raise AgentRegistrationError(f"Agent '{agent.agent_id}' already registered")

        override = self._config.override_for(agent.agent_id)
        if override is not None:
            self._apply_override(agent, override)

        try:
            schedule = ScheduleEntry.starting_at(self._clock(), agent.execution_interval)
        except ValueError as e:
            raise AgentRegistrationError(f"Agent '{agent.agent_id}': {e}") from e

        self._slots[agent.agent_id] = _AgentSlot(agent=agent, schedule=schedule)
        self.metrics.set_registered_agents(len(self._slots))
        logger.info("Agent registered", {
            "agent_id": agent.agent_id,
            "priority": agent.priority,
            "enabled": agent.enabled,
            "execution_interval": agent.execution_interval,
        })

    def unregister(self, agent_id: str) -> Agent:
        slot = self._slot(agent_id)
        del self._slots[agent_id]
        self.metrics.set_registered_agents(len(self._slots))
        logger.info("Agent unregistered", {"agent_id": agent_id})
        return slot.agent

    def reconfigure(
        self,
        agent_id: str,
        *,
        enabled: Optional[bool] = None,
        priority: Optional[int] = None,
        execution_interval: Optional[float] = None,
    ) -> Agent:
        """Change an agent's configuration surface without restarting."""
        slot = self._slot(agent_id)
        if execution_interval is not None and execution_interval != slot.schedule.interval:
            slot.schedule.reschedule(self._clock(), execution_interval)
            slot.agent.execution_interval = execution_interval
        if enabled is not None:
            slot.agent.enabled = enabled
        if priority is not None:
            slot.agent.priority = priority

        logger.info("Agent reconfigured", {
            "agent_id": agent_id,
            "enabled": slot.agent.enabled,
            "priority": slot.agent.priority,
            "execution_interval": slot.agent.execution_interval,
        })
        return slot.agent

    def apply_config(self, config: Config) -> None:
        """
        Adopt a (reloaded) configuration: orchestrator settings take effect from
        the next tick (max_workers once the worker pool is re-created) and
        per-agent overrides are re-applied.
        """
        self._config = config
        self.settings = config.orchestrator
        for agent_id in list(self._slots):
            override = config.override_for(agent_id)
            if override is not None:
                self.reconfigure(agent_id, **override.model_dump())

    def next_due(self, agent_id: str) -> float:
        return self._slot(agent_id).schedule.next_due

    def _slot(self, agent_id: str) -> _AgentSlot:
        try:
            return self._slots[agent_id]
        except KeyError:
            raise UnknownAgentError(agent_id) from None

    @staticmethod
    def _apply_override(agent: Agent, override: AgentOverride) -> None:
        if override.enabled is not None:
            agent.enabled = override.enabled
        if override.priority is not None:
            agent.priority = override.priority
        if override.execution_interval is not None:
            agent.execution_interval = override.execution_interval

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def run_tick(self, now: Optional[float] = None) -> Optional[TickReport]:
        """
        Run one tick at clock time `now` (defaults to the orchestrator clock).

        Returns:
            The TickReport, or None when the tick was skipped (orchestrator
            disabled or telemetry collection failed)
        """
        if not self.settings.enabled:
            logger.debug("Orchestrator disabled, tick skipped")
            return None

        async with self._tick_lock:
            return await self._run_tick(self._clock() if now is None else now)

    async def run_agent(
        self, agent_id: str, snapshot: Optional[TelemetrySnapshot] = None
    ) -> AgentResult:
        """
        Run one registered agent now, outside its schedule.

        The agent sees the published previous_results like a scheduled run
        would. Its result goes to the execution history and its actions to the
        ledger and the dispatcher, but previous_results and the agent's
        next-due time are left alone. Runs never overlap a tick.

        Args:
            agent_id: Registered agent to run
            snapshot: Telemetry to decide on, e.g. for a specific subject;
                pulled from the telemetry collaborator when omitted

        Raises:
            UnknownAgentError: if no agent is registered under agent_id
        """
        slot = self._slot(agent_id)
        if not self.settings.enabled:
            logger.debug("Orchestrator disabled, on-demand run refused", {"agent_id": agent_id})
            return AgentResult.failure(agent_id, "orchestrator disabled")

        async with self._tick_lock:
            self._ensure_executor()
            if snapshot is None:
                try:
                    snapshot = await self._collect_telemetry()
                except Exception as e:
                    description = str(e) or type(e).__name__
                    logger.error("Telemetry collection failed, on-demand run refused", {
                        "agent_id": agent_id,
                        "error": description,
                    })
                    return AgentResult.failure(agent_id, f"telemetry collection failed: {description}")

            context = self._build_context(snapshot, self._tick_count)
            result = await self._execute_slot(slot, context)

            if result.success:
                for action in self.ledger.record(result.actions):
                    self.metrics.record_action(action.action_type, action.status.value)
                self._dispatch_pending()
            self.history.record(context.subject, (result,))

        logger.info("On-demand agent run completed", {
            "agent_id": agent_id,
            "subject": context.subject,
            "success": result.success,
            "actions": len(result.actions),
        })
        return result

    def execution_history(
        self, subject: Optional[str], agent_id: Optional[str] = None
    ) -> Tuple[AgentResult, ...]:
        """Recent results recorded for `subject`, oldest first."""
        return self.history.get(subject, agent_id)

    async def _run_tick(self, now: float) -> Optional[TickReport]:
        self._ensure_executor()
        tick_number = self._tick_count + 1
        LogContext.set_tick_id(tick_number)
        started = time.perf_counter()
        started_at = datetime.now(timezone.utc)

        with self._tracer.start_as_current_span("orchestrator.tick") as span:
            span.set_attribute("tick.number", tick_number)

            try:
                snapshot = await self._collect_telemetry()
            except Exception as e:
                # Next-due times stay untouched so due agents retry next tick.
                logger.error("Telemetry collection failed, tick skipped", {
                    "tick": tick_number,
                    "error": str(e) or type(e).__name__,
                }, exc_info=True)
                self.metrics.record_tick("telemetry_failed")
                return None

            self._tick_count = tick_number
            context = self._build_context(snapshot, tick_number)
            due, rejected = self._select_due(now)
            span.set_attribute("tick.agents", len(due))

            results: List[AgentResult] = []
            if due:
                results = list(await asyncio.gather(
                    *(self._execute_slot(slot, context) for slot in due)
                ))
                for slot in due:
                    missed = slot.schedule.advance(now)
                    if missed:
                        logger.warning("Agent was late, missed runs dropped", {
                            "agent_id": slot.agent.agent_id,
                            "missed": missed,
                        })
            results.extend(rejected)

            priorities = {agent_id: slot.agent.priority for agent_id, slot in self._slots.items()}
            aggregation = self.aggregator.aggregate(tick_number, results, priorities)
            self.aggregator.publish(aggregation)
            for anomaly in aggregation.anomalies:
                self.metrics.record_anomaly(anomaly.kind.value)

            for action in self.ledger.record(aggregation.actions):
                self.metrics.record_action(action.action_type, action.status.value)
            dispatched = self._dispatch_pending()
            self.history.record(context.subject, aggregation.results)

            duration = time.perf_counter() - started
            report = TickReport(
                tick_number=tick_number,
                subject=context.subject,
                started_at=started_at,
                duration_ms=duration * 1000.0,
                results=aggregation.results,
                aggregation=aggregation,
                dispatched_action_ids=dispatched,
            )
            await self._notify_sinks(report)

        self.metrics.record_tick("completed" if results else "idle", duration)
        logger.info("Tick completed", {
            "tick": tick_number,
            "agents": len(due),
            "duration_ms": round(duration * 1000.0, 2),
            **aggregation.stats,
        })
        return report

    async def _collect_telemetry(self) -> TelemetrySnapshot:
        timeout = self.settings.telemetry_timeout_seconds
        try:
            snapshot = await asyncio.wait_for(self._pull_snapshot(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"telemetry collection exceeded {timeout}s") from None

        if not isinstance(snapshot, TelemetrySnapshot):
            raise TypeError(f"telemetry returned {type(snapshot).__name__}, expected TelemetrySnapshot")
        return snapshot

    async def _pull_snapshot(self) -> Any:
        collect = self.telemetry.collect
        if inspect.iscoroutinefunction(collect):
            return await collect()

        # The loop's default executor, never the agent pool: threads of
        # timed-out agents may still hold every agent worker.
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, collect)
        if inspect.isawaitable(snapshot):
            snapshot = await snapshot
        return snapshot

    def _build_context(self, snapshot: TelemetrySnapshot, tick_number: int) -> AgentContext:
        return AgentContext(
            timestamp=datetime.now(timezone.utc),
            tick_number=tick_number,
            network_data=snapshot.network_data,
            user_id=snapshot.user_id,
            device_id=snapshot.device_id,
            phone_number=snapshot.phone_number,
            previous_results=self.aggregator.snapshot(),
            state=copy.deepcopy(snapshot.state),
            historical_data=copy.deepcopy(snapshot.historical_data),
            config=copy.deepcopy(self.context_config),
        )

    def _select_due(self, now: float) -> Tuple[List[_AgentSlot], List[AgentResult]]:
        """
        Enabled, due agents in dispatch order, capped at max_concurrent_agents.

        An enabled agent whose interval was changed to an invalid value is not
        scheduled; it gets a failed result instead, every tick until fixed.
        """
        due: List[_AgentSlot] = []
        rejected: List[AgentResult] = []
        for slot in self._slots.values():
            agent = slot.agent
            # Interval changes made directly on the agent are picked up here.
            if agent.execution_interval != slot.schedule.interval:
                try:
                    slot.schedule.reschedule(now, agent.execution_interval)
                except (TypeError, ValueError) as e:
                    if agent.enabled:
                        logger.error("Invalid execution interval, agent not scheduled", {
                            "agent_id": agent.agent_id,
                            "execution_interval": repr(agent.execution_interval),
                        })
                        rejected.append(
                            AgentResult.failure(agent.agent_id, f"invalid execution interval: {e}")
                        )
                        self.metrics.record_execution(agent.agent_id, ExecutionOutcome.FAILED.value, 0.0)
                    continue
            if agent.enabled and slot.schedule.is_due(now):
                due.append(slot)
        due.sort(key=lambda s: (-s.agent.priority, s.agent.agent_id))

        limit = self.settings.max_concurrent_agents
        if len(due) > limit:
            logger.warning("More agents due than allowed per tick, deferring the rest", {
                "due": len(due),
                "limit": limit,
                "deferred": [slot.agent.agent_id for slot in due[limit:]],
            })
        return due[:limit], rejected

    async def _execute_slot(self, slot: _AgentSlot, context: AgentContext) -> AgentResult:
        agent = slot.agent
        LogContext.set_agent_id(agent.agent_id)
        timeout = self.settings.agent_timeout_seconds
        started = time.perf_counter()

        with self._tracer.start_as_current_span("agent.execute") as span:
            span.set_attribute("agent.id", agent.agent_id)
            try:
                result = await asyncio.wait_for(self._harness.run(agent, context), timeout=timeout)
                if result.skipped:
                    outcome = ExecutionOutcome.SKIPPED
                elif result.success:
                    outcome = ExecutionOutcome.SUCCESS
                else:
                    outcome = ExecutionOutcome.FAILED
            except asyncio.TimeoutError:
                elapsed_ms = (time.perf_counter() - started) * 1000.0
                logger.warning("Agent execution timed out", {
                    "agent_id": agent.agent_id,
                    "timeout_seconds": timeout,
                })
                result = AgentResult.timed_out(agent.agent_id, elapsed_ms)
                outcome = ExecutionOutcome.TIMEOUT
            span.set_attribute("agent.outcome", outcome.value)

        self.metrics.record_execution(agent.agent_id, outcome.value, time.perf_counter() - started)
        return result

    # ------------------------------------------------------------------
    # Outbound collaborators
    # ------------------------------------------------------------------

    def _dispatch_pending(self) -> Tuple[str, ...]:
        if self.dispatcher is None:
            return ()

        dispatched: List[str] = []
        for action in self.ledger.claim_pending():
            dispatched.append(action.action_id)
            try:
                outcome = self.dispatcher.dispatch(action, self.ledger)
            except Exception as e:
                self._mark_dispatch_failed(action.action_id, e)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(self._await_dispatch(action.action_id, outcome))
                self._dispatch_tasks.add(task)
                task.add_done_callback(self._dispatch_tasks.discard)
        return tuple(dispatched)

    async def _await_dispatch(self, action_id: str, outcome: Awaitable[Any]) -> None:
        try:
            await outcome
        except Exception as e:
            self._mark_dispatch_failed(action_id, e)

    def _mark_dispatch_failed(self, action_id: str, error: Exception) -> None:
        description = str(error) or type(error).__name__
        logger.error("Action dispatch failed", {"action_id": action_id, "error": description})
        action = self.ledger.get(action_id)
        if action.is_terminal:
            return
        if action.status == ActionStatus.PENDING:
            self.ledger.update_status(action_id, ActionStatus.EXECUTING)
        self.ledger.update_status(action_id, ActionStatus.FAILED, error=description)

    async def _notify_sinks(self, report: TickReport) -> None:
        for sink in self.result_sinks:
            try:
                outcome = sink(report)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Result sink failed", {"sink": repr(sink), "error": str(e)})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the orchestration loop in a background task."""
        if self.running:
            return
        self._ensure_executor()
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(), name="orchestrator-loop")
        logger.info("Orchestrator started", {
            "agents": len(self._slots),
            "tick_seconds": self.settings.tick_seconds,
        })

    async def stop(self) -> None:
        """
        Stop scheduling new ticks.

        The in-flight tick may finish within shutdown_grace_seconds; after
        that it is cancelled before it publishes anything.
        """
        grace = self.settings.shutdown_grace_seconds
        if self._loop_task is not None:
            self._stop_event.set()
            try:
                await asyncio.wait_for(asyncio.shield(self._loop_task), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("In-flight tick exceeded the shutdown grace period, cancelling", {
                    "grace_seconds": grace,
                })
                self._loop_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._loop_task
            self._loop_task = None

        if self._dispatch_tasks:
            await asyncio.wait(set(self._dispatch_tasks), timeout=grace)

        if self._executor is not None:
            # Threads of timed-out agents are abandoned, not joined.
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Orchestrator stopped", {"ticks": self._tick_count})

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _ensure_executor(self) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.max_workers, thread_name_prefix="agent-worker"
            )
            self._harness = ExecutionHarness(self._executor)

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.tick_seconds
        next_tick = loop.time()

        while not self._stop_event.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error("Unexpected tick error", {"error": str(e)}, exc_info=True)

            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Overloaded: skip the boundaries we already missed.
                next_tick = loop.time()
                delay = 0.0
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
