"""OpenTelemetry tracing, enabled only when an OTLP endpoint is configured and the telemetry extra is installed."""

from contextlib import contextmanager
import logging

from comicgen.core.request_context import get_panel_id, get_session_id
from comicgen.core.settings import settings

logger = logging.getLogger(__name__)

_TRACER_NAME = "comicgen"
_configured_services: set[str] = set()


def setup_telemetry(app=None, service_name: str = "comicgen") -> bool:
    """Export spans for ``service_name`` and instrument ``app``; returns whether tracing is on."""
    endpoint = settings.otel_exporter_endpoint
    if not endpoint:
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("telemetry_disabled reason=%s", exc)
        return False

    # The global provider can only be set once per process.
    if not _configured_services:
        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        logger.info("telemetry_enabled service=%s endpoint=%s", service_name, endpoint)

    if app is not None and service_name not in _configured_services:
        FastAPIInstrumentor().instrument_app(app)
    _configured_services.add(service_name)
    return True


@contextmanager
def trace_span(name: str, **attributes):
    """Span tagged with the current session and panel; a no-op without OpenTelemetry."""
    try:
        from opentelemetry import trace
    except ImportError:
        yield None
        return

    attributes.setdefault("comic.session_id", get_session_id())
    attributes.setdefault("comic.panel_id", get_panel_id())
    with trace.get_tracer(_TRACER_NAME).start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
