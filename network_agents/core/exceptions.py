"""
Error taxonomy of the orchestration core.

Agent failures, timeouts and aggregation anomalies are never raised: they are
turned into Results or anomaly records. The exceptions below only signal
programming errors at the API boundary.
"""


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestration core."""
    pass


class AgentRegistrationError(OrchestrationError):
    """Raised when an agent cannot be registered (duplicate id, bad interval)."""
    pass


class UnknownAgentError(OrchestrationError, KeyError):
    """Raised when an operation references an agent id that is not registered."""
    pass


class InvalidActionTransition(OrchestrationError, ValueError):
    """Raised when an action status change is not allowed by the state machine."""

    def __init__(self, action_id: str, current, requested):
        self.action_id = action_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Action {action_id}: transition {current.value} -> {requested.value} is not allowed"
        )


class UnknownActionError(OrchestrationError, KeyError):
    """Raised when a status callback references an action the ledger never recorded."""
    pass


class ActionNotDispatchable(OrchestrationError):
    """Raised when an action in a terminal (or already claimed) state is handed out again."""
    pass
