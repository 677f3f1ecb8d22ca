from .agent import Agent, default_should_execute, execute, should_execute
from .enums import ActionStatus, ActionType, ExecutionOutcome
from .exceptions import (
    ActionNotDispatchable,
    AgentRegistrationError,
    InvalidActionTransition,
    OrchestrationError,
    UnknownActionError,
    UnknownAgentError,
)
from .harness import ExecutionHarness
from .models import (
    SKIPPED_MESSAGE,
    TIMED_OUT_ERROR,
    ActionParameters,
    AgentAction,
    AgentContext,
    AgentResult,
    ConnectivityMetrics,
    DeviceStatus,
    LocationData,
    NetworkData,
    QoSMetrics,
    TelemetrySnapshot,
)
