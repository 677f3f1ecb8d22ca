"""
Observability bootstrap: structured logging, Prometheus metrics and
OpenTelemetry tracing, all driven by ObservabilityConfig.
"""

from typing import Optional

from ..config import Config
from .metrics import OrchestratorMetrics
from .structured_logging import LogContext, StructuredLogger, configure_logging, get_logger
from .tracing import get_tracer, setup_tracing


def configure_observability(config: Config, metrics: Optional[OrchestratorMetrics] = None) -> None:
    """Apply the observability settings of `config` to the running process."""
    settings = config.observability
    configure_logging(settings.log_level, settings.json_logs)
    if metrics is not None and settings.metrics_enabled:
        metrics.start_server(settings.metrics_port)
    setup_tracing(settings, config.environment)


__all__ = [
    "LogContext",
    "OrchestratorMetrics",
    "StructuredLogger",
    "configure_logging",
    "configure_observability",
    "get_logger",
    "get_tracer",
    "setup_tracing",
]
