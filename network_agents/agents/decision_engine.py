"""
Decision Engine - Deterministic network rules

Scores telemetry against fixed rules and, when the confidence reaches the
threshold, proposes PENDING actions for the caller to return in its result.
The engine never executes anything itself.
"""

import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from ..core.enums import ActionType
from ..core.models import ActionParameters, AgentAction, NetworkData

logger = logging.getLogger(__name__)

CONNECTIVITY_SERVICE = "connectivity-service"
LOCATION_SERVICE = "location-service"
DEVICE_MANAGEMENT_SERVICE = "device-management-service"

# QoS rule thresholds
WEAK_SIGNAL_THRESHOLD = 50
HIGH_LATENCY_MS = 100.0
LOW_THROUGHPUT_MBPS = 10.0
DEFAULT_QOS_PROFILE = "DEFAULT"

# Location rule thresholds
STALE_LOCATION_AGE_S = 120
LOW_ACCURACY_M = 100.0

FAULTY_DEVICE_STATUSES = ("ERROR", "UNKNOWN")


def is_reported(record: BaseModel) -> bool:
    """True when at least one field of a telemetry record is known."""
    return any(value is not None for value in record.model_dump().values())


def action_target(service: str, subject: Optional[str]) -> str:
    """Target identifier of an action: `<service>/<subject>`, or the bare service."""
    return f"{service}/{subject}" if subject else service


class DecisionOutcome(BaseModel):
    """Verdict of one rule set."""
    model_config = ConfigDict(frozen=True)

    should_act: bool = False
    confidence: float = 0.0
    reason: str = ""
    actions: Tuple[AgentAction, ...] = ()


class DecisionEngine:
    """
    Rule-based scorer shared by the built-in agents.

    Every analysis adds up (or raises to a floor) a confidence in [0, 1] and
    compares it against `confidence_threshold`.
    """

    ENGINE_NAME = "DecisionEngine"

    def __init__(self, confidence_threshold: float = 0.7):
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        self.confidence_threshold = confidence_threshold

    def _outcome(self, confidence: float, reasons: List[str], action: Optional[AgentAction]) -> DecisionOutcome:
        confidence = round(min(confidence, 1.0), 6)
        should_act = confidence > 0.0 and confidence >= self.confidence_threshold
        reason = " ".join(reasons)
        actions: Tuple[AgentAction, ...] = ()
        if should_act and action is not None:
            actions = (action.model_copy(update={"reason": reason}),)
        return DecisionOutcome(
            should_act=should_act,
            confidence=confidence,
            reason=reason,
            actions=actions,
        )

    def analyze_qos_requirement(
        self,
        network_data: NetworkData,
        phone_number: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Decide whether the subject's QoS session needs adjusting.

        Args:
            network_data: Telemetry of the current tick
            phone_number: Subject of the adjustment

        Returns:
            DecisionOutcome with at most one QOS_ADJUSTMENT action
        """
        connectivity = network_data.connectivity
        qos = network_data.qos
        confidence = 0.0
        reasons: List[str] = []

        disconnected = connectivity.is_connected is False
        weak_signal = (
            connectivity.signal_strength is not None
            and connectivity.signal_strength < WEAK_SIGNAL_THRESHOLD
        )
        high_latency = connectivity.latency_ms is not None and connectivity.latency_ms > HIGH_LATENCY_MS

        if disconnected:
            confidence += 0.9
            reasons.append("Device is disconnected.")
        if weak_signal:
            confidence += 0.3
            reasons.append("Low signal strength detected.")
        if high_latency:
            confidence += 0.3
            reasons.append("High latency detected.")
        if connectivity.throughput_mbps is not None and connectivity.throughput_mbps < LOW_THROUGHPUT_MBPS:
            confidence += 0.2
            reasons.append("Low throughput detected.")
        if qos.qos_profile == DEFAULT_QOS_PROFILE:
            confidence += 0.2
            reasons.append("Default QoS profile in use.")

        parameters = {"phone_number": phone_number, "qos_profile": qos.qos_profile}
        if disconnected or weak_signal:
            parameters.update(qos_priority=1, bandwidth_mbps=100.0)
        if high_latency:
            parameters["target_latency_ms"] = 50.0

        action = AgentAction(
            action_type=ActionType.QOS_ADJUSTMENT.value,
            target=action_target(CONNECTIVITY_SERVICE, phone_number),
            parameters=ActionParameters(**parameters),
        )
        outcome = self._outcome(confidence, reasons, action)
        logger.debug(
            f"[{self.ENGINE_NAME}] QoS analysis: confidence={outcome.confidence:.2f} "
            f"should_act={outcome.should_act}"
        )
        return outcome

    def analyze_location_verification(
        self,
        network_data: NetworkData,
        phone_number: Optional[str] = None,
    ) -> DecisionOutcome:
        """Decide whether the last known location must be re-verified."""
        location = network_data.location
        confidence = 0.0
        reasons: List[str] = []

        if location.max_age_s is not None and location.max_age_s > STALE_LOCATION_AGE_S:
            confidence = 0.8
            reasons.append("Location data is stale, verification needed.")
        if location.accuracy_m is not None and location.accuracy_m > LOW_ACCURACY_M:
            confidence = max(confidence, 0.7)
            reasons.append("Low location accuracy detected.")

        action = AgentAction(
            action_type=ActionType.LOCATION_VERIFY.value,
            target=action_target(LOCATION_SERVICE, phone_number),
            parameters=ActionParameters(
                phone_number=phone_number,
                extra={"max_age_s": location.max_age_s, "accuracy_m": location.accuracy_m},
            ),
        )
        outcome = self._outcome(confidence, reasons, action)
        logger.debug(
            f"[{self.ENGINE_NAME}] Location analysis: confidence={outcome.confidence:.2f} "
            f"should_act={outcome.should_act}"
        )
        return outcome

    def analyze_device_swap(
        self,
        network_data: NetworkData,
        phone_number: Optional[str] = None,
    ) -> DecisionOutcome:
        """Decide whether a device swap check is warranted."""
        device = network_data.device_status
        confidence = 0.0
        reasons: List[str] = []

        if device.is_active is False:
            confidence = 0.9
            reasons.append("Device is inactive, swap may be needed.")
        if device.status is not None and device.status.upper() in FAULTY_DEVICE_STATUSES:
            confidence = max(confidence, 0.8)
            reasons.append("Device status indicates problems.")

        action = AgentAction(
            action_type=ActionType.DEVICE_SWAP.value,
            target=action_target(DEVICE_MANAGEMENT_SERVICE, phone_number),
            parameters=ActionParameters(phone_number=phone_number, device_id=device.device_id),
        )
        outcome = self._outcome(confidence, reasons, action)
        logger.debug(
            f"[{self.ENGINE_NAME}] Device analysis: confidence={outcome.confidence:.2f} "
            f"should_act={outcome.should_act}"
        )
        return outcome
