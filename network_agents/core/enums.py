from enum import Enum


class ActionStatus(str, Enum):
    """Lifecycle status of an AgentAction."""
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, new_status: "ActionStatus") -> bool:
        return new_status in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset(
    {ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.CANCELLED}
)

ALLOWED_TRANSITIONS = {
    ActionStatus.PENDING: frozenset({ActionStatus.EXECUTING, ActionStatus.CANCELLED}),
    ActionStatus.EXECUTING: frozenset(
        {ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.CANCELLED}
    ),
    ActionStatus.SUCCESS: frozenset(),
    ActionStatus.FAILED: frozenset(),
    ActionStatus.CANCELLED: frozenset(),
}


class ActionType(str, Enum):
    """Action tags proposed by the built-in agents. Pluggable agents may use their own."""
    QOS_ADJUSTMENT = "QOS_ADJUSTMENT"
    LOCATION_VERIFY = "LOCATION_VERIFY"
    DEVICE_SWAP = "DEVICE_SWAP"
    EMERGENCY_QOS = "EMERGENCY_QOS"


class ExecutionOutcome(str, Enum):
    """How a single agent execution ended, as seen by the orchestrator."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
