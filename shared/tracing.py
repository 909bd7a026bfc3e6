from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased


def setup_tracing(
    service_name: str,
    otlp_endpoint: str,
    service_version: str = "unknown",
    sample_ratio: float = 1.0,
) -> bool:
    """
    Install a tracer provider exporting spans over OTLP/HTTP.

    Returns False and leaves the no-op provider in place when no endpoint
    is configured. Sampling follows the parent span when there is one.
    """
    if not otlp_endpoint:
        return False

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": service_version}),
        sampler=ParentBased(TraceIdRatioBased(sample_ratio)),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)
    return True
