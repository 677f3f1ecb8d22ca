"""
Emergency Connectivity Agent

Guarantees connectivity for emergency situations. Other collaborators signal
an emergency through the context state ("emergency" or "critical" set to
True); severe connectivity loss activates emergency mode on its own unless
auto activation is turned off.

Runs at the highest built-in priority, so its EMERGENCY_QOS action wins a
conflict with a regular QoS adjustment on the same subject.
"""

import logging
from typing import Optional

from ..core.agent import default_should_execute
from ..core.enums import ActionType
from ..core.models import ActionParameters, AgentAction, AgentContext, AgentResult
from .decision_engine import CONNECTIVITY_SERVICE, HIGH_LATENCY_MS, action_target, is_reported

logger = logging.getLogger(__name__)

AGENT_ID = "emergency-connectivity-agent"

EMERGENCY_STATE_KEYS = ("emergency", "critical")
CRITICAL_SIGNAL_THRESHOLD = 30
EMERGENCY_CONFIDENCE = 0.95

EMERGENCY_QOS_PRIORITY = 0
EMERGENCY_BANDWIDTH_MBPS = 200.0
EMERGENCY_LATENCY_MS = 10.0


class EmergencyConnectivityAgent:
    """Requests maximum QoS for a subject in an emergency."""

    def __init__(
        self,
        agent_id: str = AGENT_ID,
        *,
        auto_activate: bool = True,
        priority: int = 10,
        execution_interval: float = 10.0,
        enabled: bool = True,
    ):
        self.agent_id = agent_id
        self.name = "Emergency Connectivity Agent"
        self.description = "Ensures guaranteed connectivity for emergency services and critical situations"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval
        self.auto_activate = auto_activate

    def should_execute(self, context: AgentContext) -> bool:
        if not default_should_execute(self, context):
            return False
        if self._signalled(context):
            return True
        return context.network_data is not None and is_reported(context.network_data.connectivity)

    @staticmethod
    def _signalled(context: AgentContext) -> bool:
        return any(context.state.get(key) is True for key in EMERGENCY_STATE_KEYS)

    def _degraded(self, context: AgentContext) -> bool:
        if not self.auto_activate or context.network_data is None:
            return False
        connectivity = context.network_data.connectivity
        return (
            connectivity.is_connected is False
            or (connectivity.signal_strength is not None
                and connectivity.signal_strength < CRITICAL_SIGNAL_THRESHOLD)
            or (connectivity.latency_ms is not None and connectivity.latency_ms > HIGH_LATENCY_MS)
        )

    def decide(self, context: AgentContext) -> AgentResult:
        signalled = self._signalled(context)
        triggered_by: Optional[str] = None
        if signalled:
            triggered_by = "state"
        elif self._degraded(context):
            triggered_by = "network"

        if triggered_by is None:
            return AgentResult(
                success=True,
                confidence=EMERGENCY_CONFIDENCE,
                message="Monitoring emergency connectivity - ready to activate if needed",
                metrics={"emergency_mode": False},
                metadata={"emergency_mode": False},
            )

        subject = context.subject
        logger.warning(f"[{self.agent_id}] Emergency mode activated for {subject} (trigger: {triggered_by})")
        action = AgentAction(
            action_type=ActionType.EMERGENCY_QOS.value,
            target=action_target(CONNECTIVITY_SERVICE, subject),
            reason="Emergency situation - maximum QoS required",
            parameters=ActionParameters(
                phone_number=context.phone_number,
                qos_priority=EMERGENCY_QOS_PRIORITY,
                bandwidth_mbps=EMERGENCY_BANDWIDTH_MBPS,
                target_latency_ms=EMERGENCY_LATENCY_MS,
                extra={"reason": "EMERGENCY_CONNECTIVITY"},
            ),
        )
        message = (
            "Emergency connectivity mode active - maximum QoS guaranteed"
            if signalled
            else "Connectivity critically degraded - emergency QoS requested"
        )
        return AgentResult(
            success=True,
            confidence=EMERGENCY_CONFIDENCE,
            message=message,
            actions=(action,),
            recommendations=("Emergency QoS requested - maximum priority and bandwidth allocated",),
            metrics={"emergency_mode": signalled},
            metadata={"emergency_mode": signalled, "triggered_by": triggered_by},
        )
