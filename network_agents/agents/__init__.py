from .decision_engine import DecisionEngine, DecisionOutcome
from .device_management import DeviceManagementAgent
from .emergency_connectivity import EmergencyConnectivityAgent
from .location_verification import LocationVerificationAgent
from .network_monitoring import NetworkMonitoringAgent
from .qos_optimization import QosOptimizationAgent

__all__ = [
    "DecisionEngine",
    "DecisionOutcome",
    "DeviceManagementAgent",
    "EmergencyConnectivityAgent",
    "LocationVerificationAgent",
    "NetworkMonitoringAgent",
    "QosOptimizationAgent",
]
