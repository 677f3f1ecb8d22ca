"""
Metrics - Prometheus observability for the orchestration core
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class OrchestratorMetrics:
    """
    Prometheus metrics of one orchestrator.

    Each instance owns its CollectorRegistry unless one is passed in, so
    several orchestrators (or test cases) never clash on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "network_agents"):
        self.registry = registry or CollectorRegistry()
        self.namespace = namespace

        # 1. Tick metrics
        self.ticks_total = Counter(
            f"{namespace}_ticks_total",
            "Orchestrator ticks by outcome",
            ["outcome"],  # completed, telemetry_failed, idle
            registry=self.registry,
        )
        self.tick_duration = Histogram(
            f"{namespace}_tick_duration_seconds",
            "Wall time of a complete tick",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
            registry=self.registry,
        )

        # 2. Agent execution metrics
        self.agent_executions_total = Counter(
            f"{namespace}_agent_executions_total",
            "Agent executions by outcome",
            ["agent_id", "outcome"],  # success, failed, skipped, timeout
            registry=self.registry,
        )
        self.agent_execution_duration = Histogram(
            f"{namespace}_agent_execution_duration_seconds",
            "Duration of a single agent execution",
            ["agent_id"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
            registry=self.registry,
        )
        self.registered_agents = Gauge(
            f"{namespace}_registered_agents",
            "Number of registered agents",
            registry=self.registry,
        )

        # 3. Action and aggregation metrics
        self.actions_total = Counter(
            f"{namespace}_actions_total",
            "Actions by type and status when recorded",
            ["action_type", "status"],
            registry=self.registry,
        )
        self.aggregation_anomalies_total = Counter(
            f"{namespace}_aggregation_anomalies_total",
            "Malformed or ambiguous results detected by the aggregator",
            ["kind"],
            registry=self.registry,
        )

    def start_server(self, port: int):
        """Starts the Prometheus metrics server."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"[METRICS] Prometheus server started on port {port}")
        except Exception as e:
            logger.error(f"[METRICS] Failed to start Prometheus server on port {port}: {e}")

    def record_tick(self, outcome: str, duration_seconds: Optional[float] = None):
        self.ticks_total.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.tick_duration.observe(duration_seconds)

    def record_execution(self, agent_id: str, outcome: str, duration_seconds: float):
        self.agent_executions_total.labels(agent_id=agent_id, outcome=outcome).inc()
        self.agent_execution_duration.labels(agent_id=agent_id).observe(duration_seconds)

    def record_action(self, action_type: str, status: str):
        self.actions_total.labels(action_type=action_type, status=status).inc()

    def record_anomaly(self, kind: str):
        self.aggregation_anomalies_total.labels(kind=kind).inc()

    def set_registered_agents(self, count: int):
        self.registered_agents.set(count)
