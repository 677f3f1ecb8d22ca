"""
Network Monitoring Agent

Watches connectivity, location and device telemetry every tick it is due and
reports anomalies as recommendations and metrics. It proposes no actions; the
device management agent reads its findings from previous_results.
"""

import logging
from typing import Dict, List, Tuple

from ..core.agent import default_should_execute
from ..core.models import AgentContext, AgentResult, MetricValue

logger = logging.getLogger(__name__)

AGENT_ID = "network-monitoring-agent"

CRITICAL_SIGNAL_STRENGTH = 30
CRITICAL_LATENCY_MS = 200.0
CRITICAL_THROUGHPUT_MBPS = 5.0
CRITICAL_ACCURACY_M = 200.0

# Anomaly codes published in metadata["anomaly_codes"]
LOW_SIGNAL = "low_signal"
HIGH_LATENCY = "high_latency"
LOW_THROUGHPUT = "low_throughput"
DISCONNECTED = "disconnected"
LOW_LOCATION_ACCURACY = "low_location_accuracy"
DEVICE_INACTIVE = "device_inactive"


class NetworkMonitoringAgent:
    """Detects network anomalies in real time."""

    def __init__(
        self,
        agent_id: str = AGENT_ID,
        *,
        priority: int = 7,
        execution_interval: float = 10.0,
        enabled: bool = True,
    ):
        self.agent_id = agent_id
        self.name = "Network Monitoring Agent"
        self.description = "Continuously monitors network conditions and detects anomalies"
        self.priority = priority
        self.enabled = enabled
        self.execution_interval = execution_interval

    def should_execute(self, context: AgentContext) -> bool:
        return default_should_execute(self, context) and context.network_data is not None

    def decide(self, context: AgentContext) -> AgentResult:
        network_data = context.network_data
        connectivity = network_data.connectivity
        location = network_data.location
        device = network_data.device_status

        metrics: Dict[str, MetricValue] = {
            "signal_strength": connectivity.signal_strength,
            "latency_ms": connectivity.latency_ms,
            "throughput_mbps": connectivity.throughput_mbps,
            "network_type": connectivity.network_type,
            "location_accuracy_m": location.accuracy_m,
            "location_age_s": location.max_age_s,
            "device_status": device.status,
            "device_active": device.is_active,
        }
        findings: List[Tuple[str, str, str]] = []

        if connectivity.signal_strength is not None and connectivity.signal_strength < CRITICAL_SIGNAL_STRENGTH:
            findings.append((LOW_SIGNAL, "Critical: very low signal strength",
                             "Consider moving to an area with better coverage"))
        if connectivity.latency_ms is not None and connectivity.latency_ms > CRITICAL_LATENCY_MS:
            findings.append((HIGH_LATENCY, "Warning: high latency",
                             "Network congestion may be affecting performance"))
        if connectivity.throughput_mbps is not None and connectivity.throughput_mbps < CRITICAL_THROUGHPUT_MBPS:
            findings.append((LOW_THROUGHPUT, "Warning: low throughput",
                             "Bandwidth may be insufficient for current usage"))
        if connectivity.is_connected is False:
            findings.append((DISCONNECTED, "Critical: device is disconnected from the network",
                             "Immediate attention required, device disconnected"))
        if location.accuracy_m is not None and location.accuracy_m > CRITICAL_ACCURACY_M:
            findings.append((LOW_LOCATION_ACCURACY, "Warning: low location accuracy",
                             "Location data may not be reliable"))
        if device.is_active is False:
            findings.append((DEVICE_INACTIVE, "Critical: device is inactive",
                             "Device may need attention or replacement"))

        if findings:
            message = f"Network monitoring completed, {len(findings)} anomaly(ies) detected"
            logger.info(f"[{self.agent_id}] {message} for {context.subject}")
        else:
            message = "Network monitoring completed, no anomalies detected"

        metrics["anomaly_count"] = len(findings)
        return AgentResult(
            success=True,
            confidence=0.8 if findings else 1.0,
            message=message,
            recommendations=tuple(recommendation for _, _, recommendation in findings),
            metrics=metrics,
            metadata={
                "anomalies": [description for _, description, _ in findings],
                "anomaly_codes": [code for code, _, _ in findings],
            },
        )
