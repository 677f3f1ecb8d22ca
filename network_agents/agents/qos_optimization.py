"""
QoS Optimization Agent

Proposes QoS session adjustments when connectivity degrades.
"""

import logging
from typing import Optional

from ..core.agent import default_should_execute
from ..core.models import AgentContext, AgentResult
from .decision_engine import DecisionEngine, is_reported

logger = logging.getLogger(__name__)

AGENT_ID = "qos-optimization-agent"


class QosOptimizationAgent:
    """Optimizes Quality of Service from real-time connectivity metrics."""

    def __init__(
        self,
        agent_id: str = AGENT_ID,
        *,
        decision_engine: Optional[DecisionEngine] = None,
        priority: int = 8,
        execution_interval: float = 30.0,
        enabled: bool = True,
    ):
        self.agent_id = agent_id
        self.name = "QoS Optimization Agent"
        self.description = "Optimizes Quality of Service based on real-time network conditions"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval
        self.decision_engine = decision_engine or DecisionEngine()

    def should_execute(self, context: AgentContext) -> bool:
        # Nothing to optimize without connectivity readings.
        return (
            default_should_execute(self, context)
            and context.network_data is not None
            and is_reported(context.network_data.connectivity)
        )

    def decide(self, context: AgentContext) -> AgentResult:
        decision = self.decision_engine.analyze_qos_requirement(
            context.network_data, context.subject
        )

        if decision.should_act:
            logger.info(
                f"[{self.agent_id}] QoS adjustment needed "
                f"(confidence: {decision.confidence:.2f}): {decision.reason}"
            )
            recommendations = ("Adjust QoS to improve network performance",)
        else:
            recommendations = ("Network conditions are acceptable, no QoS adjustment needed",)

        return AgentResult(
            success=True,
            confidence=decision.confidence,
            message=decision.reason or "QoS analysis completed",
            actions=decision.actions,
            recommendations=recommendations,
            metrics={"should_act": decision.should_act},
        )
