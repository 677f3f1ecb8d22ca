"""
Device Management Agent

Proposes device swap checks for inactive or faulty devices. Its confidence is
raised when the network monitoring agent already flagged the device as
inactive in the previous tick.
"""

import logging
from typing import Optional

from ..core.agent import default_should_execute
from ..core.models import AgentContext, AgentResult
from .decision_engine import DecisionEngine, is_reported
from .network_monitoring import AGENT_ID as MONITORING_AGENT_ID, DEVICE_INACTIVE

logger = logging.getLogger(__name__)

AGENT_ID = "device-management-agent"

CORROBORATION_BONUS = 0.1


class DeviceManagementAgent:
    """Manages device and SIM operations based on device status telemetry."""

    def __init__(
        self,
        agent_id: str = AGENT_ID,
        *,
        decision_engine: Optional[DecisionEngine] = None,
        monitoring_agent_id: str = MONITORING_AGENT_ID,
        priority: int = 5,
        execution_interval: float = 120.0,
        enabled: bool = True,
    ):
        self.agent_id = agent_id
        self.name = "Device Management Agent"
        self.description = "Manages device and SIM card operations based on network conditions"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval
        self.decision_engine = decision_engine or DecisionEngine()
        self.monitoring_agent_id = monitoring_agent_id

    def should_execute(self, context: AgentContext) -> bool:
        return (
            default_should_execute(self, context)
            and context.network_data is not None
            and is_reported(context.network_data.device_status)
        )

    def _flagged_by_monitoring(self, context: AgentContext) -> bool:
        previous = context.previous_result(self.monitoring_agent_id)
        if previous is None or not previous.success:
            return False
        return DEVICE_INACTIVE in previous.metadata.get("anomaly_codes", ())

    def decide(self, context: AgentContext) -> AgentResult:
        decision = self.decision_engine.analyze_device_swap(
            context.network_data, context.subject
        )
        corroborated = decision.confidence > 0.0 and self._flagged_by_monitoring(context)
        confidence = decision.confidence
        if corroborated:
            confidence = min(1.0, confidence + CORROBORATION_BONUS)

        if decision.should_act:
            logger.info(
                f"[{self.agent_id}] Device swap check needed "
                f"(confidence: {confidence:.2f}, corroborated: {corroborated}): {decision.reason}"
            )
            recommendations = ("Run a device swap check for the subject",)
        else:
            recommendations = ("Device status is normal, no action required",)

        return AgentResult(
            success=True,
            confidence=confidence,
            message=decision.reason or "Device management analysis completed",
            actions=decision.actions,
            recommendations=recommendations,
            metrics={"corroborated": corroborated},
            metadata={"corroborated_by": self.monitoring_agent_id} if corroborated else {},
        )
