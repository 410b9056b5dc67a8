"""OpenTelemetry tracing for registry operations, downloads and verification."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from db_provisioner.infrastructure.config import ObservabilityConfig

TRACER_NAME = "db_provisioner"

_tracer: trace.Tracer | None = None


def setup_tracing(
    config: ObservabilityConfig | None = None,
    exporter: SpanExporter | None = None,
) -> trace.Tracer:
    """Install a tracer provider for the provisioner.

    Args:
        config: Observability settings; spans go to `otel_endpoint` over OTLP
            when it is set.
        exporter: Extra exporter, flushed synchronously (useful in tests).

    Returns:
        The tracer used by trace_span().
    """
    global _tracer
    config = config or ObservabilityConfig()

    from db_provisioner import __version__

    resource = Resource.create(
        {"service.name": config.otel_service_name, "service.version": __version__}
    )
    provider = TracerProvider(resource=resource)

    if config.otel_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_endpoint, insecure=True))
        )
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer = provider.get_tracer(TRACER_NAME)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the provisioner tracer (no-op until a provider is installed)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(TRACER_NAME)
    return _tracer


def reset_tracing() -> None:
    """Forget the configured tracer."""
    global _tracer
    _tracer = None


@contextmanager
def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Generator[trace.Span, None, None]:
    """Run a block inside a span; None-valued attributes are skipped."""
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
