"""
Orchestration Models - Context, Result and Action records

Every record handed between the orchestrator, the harness and the agents is an
immutable pydantic model. State changes produce new versions (model_copy) rather
than mutating a shared instance.
"""

import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from .enums import ActionStatus
from .exceptions import InvalidActionTransition

MetricValue = Union[bool, int, float, str, None]

SKIPPED_MESSAGE = "execution skipped"
TIMED_OUT_ERROR = "execution timed out"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def freeze(value: Any) -> Any:
    """Read-only copy of nested mappings and sequences. Models are already frozen."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Plain dict/list form of a frozen value, for serialization."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    if isinstance(value, frozenset):
        return [thaw(item) for item in value]
    return value


###############################################################################
#                               TELEMETRY
###############################################################################

class ConnectivityMetrics(BaseModel):
    """Connectivity status of the subject device."""
    model_config = ConfigDict(frozen=True)

    status: Optional[str] = None
    signal_strength: Optional[int] = Field(None, description="Signal strength, 0-100")
    network_type: Optional[str] = Field(None, description="5G, 4G, ...")
    latency_ms: Optional[float] = None
    throughput_mbps: Optional[float] = None
    is_connected: Optional[bool] = None


class LocationData(BaseModel):
    """Last known network location of the subject device."""
    model_config = ConfigDict(frozen=True)

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy_m: Optional[float] = None
    location_type: Optional[str] = None
    max_age_s: Optional[int] = None


class DeviceStatus(BaseModel):
    """Device and SIM information reported by the identification service."""
    model_config = ConfigDict(frozen=True)

    device_id: Optional[str] = None
    imei: Optional[str] = None
    sim_card_number: Optional[str] = None
    status: Optional[str] = None
    device_type: Optional[str] = None
    is_active: Optional[bool] = None


class QoSMetrics(BaseModel):
    """Current QoS session of the subject device."""
    model_config = ConfigDict(frozen=True)

    qos_profile: Optional[str] = None
    priority: Optional[int] = None
    bandwidth_mbps: Optional[float] = None
    latency_ms: Optional[float] = None
    is_guaranteed: Optional[bool] = None


class NetworkData(BaseModel):
    """
    Telemetry snapshot assembled by the collaborators for one tick.

    raw_data is the forward-compatible escape hatch for fields that have no
    typed home yet. Keys are namespaced "<source>.<field>", e.g.
    "location.civic_address".
    """
    model_config = ConfigDict(frozen=True)

    connectivity: ConnectivityMetrics = Field(default_factory=ConnectivityMetrics)
    location: LocationData = Field(default_factory=LocationData)
    device_status: DeviceStatus = Field(default_factory=DeviceStatus)
    qos: QoSMetrics = Field(default_factory=QoSMetrics)
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class TelemetrySnapshot(BaseModel):
    """What the telemetry collaborator returns once per tick."""
    model_config = ConfigDict(frozen=True)

    network_data: NetworkData = Field(default_factory=NetworkData)
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    phone_number: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
    historical_data: Dict[str, Any] = Field(default_factory=dict)


###############################################################################
#                                ACTIONS
###############################################################################

class ActionParameters(BaseModel):
    """Typed parameters of an action. `extra` holds keys not modeled yet."""
    model_config = ConfigDict(frozen=True)

    phone_number: Optional[str] = None
    device_id: Optional[str] = None
    qos_profile: Optional[str] = None
    qos_priority: Optional[int] = None
    bandwidth_mbps: Optional[float] = None
    target_latency_ms: Optional[float] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class AgentAction(BaseModel):
    """
    A proposed or in-progress effect on an external system.

    Created PENDING by an agent's decision logic. Only the action dispatcher
    (through the ActionLedger) moves it forward, and only along the transitions
    allowed by ActionStatus.
    """
    model_config = ConfigDict(frozen=True)

    action_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action_type: str = Field(..., description="Action tag, e.g. QOS_ADJUSTMENT")
    target: str = Field(..., description="Identifier of the resource the action acts on")
    parameters: ActionParameters = Field(default_factory=ActionParameters)
    status: ActionStatus = ActionStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    reason: str = ""
    source_agent_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(
        self,
        new_status: ActionStatus,
        *,
        result: Optional[Any] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> "AgentAction":
        """
        Return the next version of this action in `new_status`.

        Raises:
            InvalidActionTransition: if the state machine forbids the change.
        """
        if not self.status.can_transition_to(new_status):
            raise InvalidActionTransition(self.action_id, self.status, new_status)

        update: Dict[str, Any] = {"status": new_status, "updated_at": _utcnow()}
        if result is not None:
            update["result"] = result
        if error is not None:
            update["error"] = error
        if reason is not None:
            update["reason"] = reason
        return self.model_copy(update=update)


###############################################################################
#                                RESULTS
###############################################################################

class AgentResult(BaseModel):
    """Outcome of one agent execution. Produced once per agent per tick."""
    model_config = ConfigDict(frozen=True)

    agent_id: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    success: bool = False
    skipped: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    message: str = ""
    actions: Tuple[AgentAction, ...] = ()
    recommendations: Tuple[str, ...] = ()
    metrics: Dict[str, MetricValue] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    execution_time_ms: float = Field(0.0, ge=0.0)

    @classmethod
    def skipped_for(cls, agent_id: str) -> "AgentResult":
        return cls(agent_id=agent_id, success=False, skipped=True, message=SKIPPED_MESSAGE)

    @classmethod
    def failure(cls, agent_id: str, error: str, execution_time_ms: float = 0.0) -> "AgentResult":
        return cls(
            agent_id=agent_id,
            success=False,
            message=f"execution failed: {error}",
            error=error,
            execution_time_ms=max(execution_time_ms, 0.0),
        )

    @classmethod
    def timed_out(cls, agent_id: str, execution_time_ms: float) -> "AgentResult":
        return cls.failure(agent_id, TIMED_OUT_ERROR, execution_time_ms)


###############################################################################
#                                CONTEXT
###############################################################################

_CONTEXT_MAPPINGS = ("previous_results", "state", "historical_data", "config")


class AgentContext(BaseModel):
    """
    Per-tick snapshot handed to every agent.

    Built once per tick by the orchestrator and shared read-only by all agents
    of that tick. previous_results holds the aggregated results published at
    the end of the previous tick, never results of the current one.

    The mapping fields are frozen on construction (read-only views, lists
    become tuples), so one agent cannot change what its peers of the same
    tick read.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    tick_number: int = 0
    network_data: Optional[NetworkData] = Field(default_factory=NetworkData)
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    phone_number: Optional[str] = None
    previous_results: Mapping[str, AgentResult] = Field(default_factory=dict)
    state: Mapping[str, Any] = Field(default_factory=dict)
    historical_data: Mapping[str, Any] = Field(default_factory=dict)
    config: Mapping[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _freeze_mappings(self) -> "AgentContext":
        for name in _CONTEXT_MAPPINGS:
            object.__setattr__(self, name, freeze(getattr(self, name)))
        return self

    @field_serializer(*_CONTEXT_MAPPINGS)
    def _serialize_mapping(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        return thaw(value)

    @property
    def subject(self) -> Optional[str]:
        """Best identifier of the monitored subject (phone, then device, then user)."""
        return self.phone_number or self.device_id or self.user_id

    def previous_result(self, agent_id: str) -> Optional[AgentResult]:
        return self.previous_results.get(agent_id)
