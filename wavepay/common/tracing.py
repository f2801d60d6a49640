"""OpenTelemetry wiring and a span helper for purchase and boost work."""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from wavepay.common.config import settings


def setup_tracing(service_name: str) -> None:
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.namespace": "wavepay"})
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Request spans for every route except probes and scrapes."""

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


@contextmanager
def traced(name: str, attributes: dict | None = None):
    """Child span named `name`; `None` attributes are left off."""

    # Looked up per call so a provider registered after import is honored.
    tracer = trace.get_tracer("wavepay.monetization")
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
