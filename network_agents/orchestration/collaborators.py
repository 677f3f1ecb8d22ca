"""
Collaborator boundary of the orchestration core.

Telemetry flows in through a TelemetrySource; actions flow out to an
ActionDispatcher and tick reports to result sinks. Every collaborator may be
synchronous or return an awaitable.
"""

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Union

from ..core.models import AgentAction, TelemetrySnapshot
from .lifecycle import ActionLedger

if TYPE_CHECKING:
    from .orchestrator import TickReport

logger = logging.getLogger(__name__)


class TelemetrySource(Protocol):
    """Assembles NetworkData and subject identifiers; called once per tick."""

    def collect(self) -> Union[TelemetrySnapshot, Awaitable[TelemetrySnapshot]]:
        ...


class ActionDispatcher(Protocol):
    """
    Executes actions against the external systems.

    Receives PENDING actions and reports progress through
    ledger.update_status(): EXECUTING before the side effect, then SUCCESS or
    FAILED.
    """

    def dispatch(self, action: AgentAction, ledger: ActionLedger) -> Optional[Awaitable[None]]:
        ...


ResultSink = Callable[["TickReport"], Any]


class StaticTelemetrySource:
    """Telemetry source that always returns the same snapshot (replaceable at runtime)."""

    def __init__(self, snapshot: Optional[TelemetrySnapshot] = None):
        self.snapshot = snapshot or TelemetrySnapshot()

    def collect(self) -> TelemetrySnapshot:
        return self.snapshot


class LoggingResultSink:
    """Result sink that writes one log line per agent result."""

    def __init__(self, logger_name: str = "network_agents.results"):
        self.logger = logging.getLogger(logger_name)

    def __call__(self, report: "TickReport") -> None:
        for result in report.results:
            self.logger.info(
                "tick=%d agent=%s success=%s skipped=%s confidence=%.2f actions=%d time=%.1fms %s",
                report.tick_number,
                result.agent_id,
                result.success,
                result.skipped,
                result.confidence,
                len(result.actions),
                result.execution_time_ms,
                result.error or result.message,
            )
