"""OpenTelemetry setup and span helpers.

Export is opt-in (`TRACING_ENABLED`); without it spans go to the default no-op
provider, so instrumentation stays cheap in tests and local runs.
"""

from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from pesaproxy.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Register an OTLP-exporting tracer provider if tracing is enabled."""

    if not settings.tracing_enabled:
        return
    resource = Resource.create({"service.name": service_name, "pesapal.env": settings.pesapal_env})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def gateway_span(endpoint: str, **attributes: str) -> Iterator[trace.Span]:
    """Wrap one outbound Pesapal call in a client span."""

    tracer = trace.get_tracer("pesaproxy.gateway")
    with tracer.start_as_current_span(f"pesapal.{endpoint}", kind=trace.SpanKind.CLIENT) as span:
        span.set_attribute("pesapal.endpoint", endpoint)
        for key, value in attributes.items():
            if value:
                span.set_attribute(f"pesapal.{key}", value)
        yield span
