"""
Shared fixtures: a controllable clock, stub agents and an orchestrator factory
wired with isolated metrics and explicit configuration.
"""

from typing import Any, Callable, List, Optional

import pytest

from network_agents.config import Config, OrchestratorConfig
from network_agents.core.models import (
    AgentAction,
    AgentContext,
    AgentResult,
    ConnectivityMetrics,
    NetworkData,
    TelemetrySnapshot,
)
from network_agents.observability.metrics import OrchestratorMetrics
from network_agents.orchestration import Orchestrator, StaticTelemetrySource


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class StubAgent:
    """Minimal Agent implementation whose decision logic is injected."""

    def __init__(
        self,
        agent_id: str,
        *,
        priority: int = 5,
        execution_interval: float = 10.0,
        enabled: bool = True,
        decide: Optional[Callable[[AgentContext], Any]] = None,
    ):
        self.agent_id = agent_id
        self.name = agent_id
        self.description = f"stub agent {agent_id}"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval
        self.calls: List[AgentContext] = []
        self._decide = decide

    def decide(self, context: AgentContext) -> AgentResult:
        self.calls.append(context)
        if self._decide is not None:
            return self._decide(context)
        return AgentResult(success=True, confidence=1.0, message="ok")


def propose(target: str, action_type: str = "QOS_ADJUSTMENT") -> Callable[[AgentContext], AgentResult]:
    """Decision logic that always proposes one action on `target`."""

    def decide(context: AgentContext) -> AgentResult:
        return AgentResult(
            success=True,
            confidence=0.9,
            actions=(AgentAction(action_type=action_type, target=target),),
        )

    return decide


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot():
    return TelemetrySnapshot(
        network_data=NetworkData(
            connectivity=ConnectivityMetrics(signal_strength=80, latency_ms=20.0, is_connected=True),
        ),
        phone_number="+33612345678",
    )


@pytest.fixture
def telemetry(snapshot):
    return StaticTelemetrySource(snapshot)


@pytest.fixture
def make_config():
    def factory(**orchestrator_settings) -> Config:
        orchestrator_settings.setdefault("agent_timeout_seconds", 2.0)
        return Config(orchestrator=OrchestratorConfig(**orchestrator_settings))

    return factory


@pytest.fixture
def make_orchestrator(clock, telemetry, make_config):
    created: List[Orchestrator] = []

    def factory(agents=(), *, config: Optional[Config] = None, **kwargs) -> Orchestrator:
        kwargs.setdefault("telemetry", telemetry)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("metrics", OrchestratorMetrics())
        orchestrator = Orchestrator(
            kwargs.pop("telemetry"),
            agents,
            config=config or make_config(),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        if orchestrator._executor is not None:
            orchestrator._executor.shutdown(wait=False)
