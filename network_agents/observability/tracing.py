"""
OpenTelemetry configuration for tick and agent spans.
"""

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ..config import ObservabilityConfig


def get_tracer() -> trace.Tracer:
    """Tracer used by the orchestrator. A no-op until setup_tracing() installs a provider."""
    return trace.get_tracer("network_agents")


def setup_tracing(config: ObservabilityConfig, environment: str = "development"):
    """
    Configure OpenTelemetry span export.

    Args:
        config: Observability settings (tracing_enabled, otlp_endpoint, service_name)
        environment: Deployment environment recorded on the resource

    Returns:
        The installed TracerProvider, or None when tracing is disabled
    """
    if not config.tracing_enabled:
        return None

    resource = Resource.create({
        "service.name": config.service_name,
        "deployment.environment": environment,
    })

    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return provider
