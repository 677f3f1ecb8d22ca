from .aggregator import (
    SUPERSEDED_REASON,
    AggregationAnomaly,
    AggregationResult,
    AnomalyKind,
    ResultAggregator,
)
from .collaborators import (
    ActionDispatcher,
    LoggingResultSink,
    ResultSink,
    StaticTelemetrySource,
    TelemetrySource,
)
from .history import ExecutionHistory
from .lifecycle import SUPERSEDED_BY_NEWER_REASON, ActionLedger
from .orchestrator import Orchestrator, TickReport
from .scheduler import ScheduleEntry
