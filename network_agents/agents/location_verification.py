"""
Location Verification Agent

Requests a location re-verification when the last fix is stale or inaccurate.
"""

import logging
from typing import Optional

from ..core.agent import default_should_execute
from ..core.models import AgentContext, AgentResult
from .decision_engine import DecisionEngine, is_reported

logger = logging.getLogger(__name__)

AGENT_ID = "location-verification-agent"


class LocationVerificationAgent:

    def __init__(
        self,
        agent_id: str = AGENT_ID,
        *,
        decision_engine: Optional[DecisionEngine] = None,
        priority: int = 6,
        execution_interval: float = 60.0,
        enabled: bool = True,
    ):
        self.agent_id = agent_id
        self.name = "Location Verification Agent"
        self.description = "Verifies device location when network location data is stale or inaccurate"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval
        self.decision_engine = decision_engine or DecisionEngine()

    def should_execute(self, context: AgentContext) -> bool:
        return (
            default_should_execute(self, context)
            and context.network_data is not None
            and is_reported(context.network_data.location)
        )

    def decide(self, context: AgentContext) -> AgentResult:
        decision = self.decision_engine.analyze_location_verification(
            context.network_data, context.subject
        )
        location = context.network_data.location

        if decision.should_act:
            logger.info(f"[{self.agent_id}] Location verification needed: {decision.reason}")
            recommendations = ("Verify device location against the network",)
        else:
            recommendations = ()

        return AgentResult(
            success=True,
            confidence=decision.confidence,
            message=decision.reason or "Location data is current",
            actions=decision.actions,
            recommendations=recommendations,
            metrics={
                "location_age_s": location.max_age_s,
                "location_accuracy_m": location.accuracy_m,
            },
        )
