"""
Centralized Tracing Utility

OpenTelemetry tracing for the dispatch path. Spans are created through the
OpenTelemetry API; until ``configure_tracing`` installs an SDK provider they
are non-recording and cost almost nothing.
"""

import logging
from typing import Optional
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

# Global tracer provider
_tracer_provider: Optional[TracerProvider] = None
_tracing_configured = False


def configure_tracing(settings) -> None:
    """
    Configure OpenTelemetry tracing from application settings.

    Settings:
    - TRACING_ENABLED: Enable/disable tracing
    - TRACING_EXPORTER: "console" or "none"
    - TRACING_SERVICE_NAME: Service name attached to every span
    """
    global _tracer_provider, _tracing_configured

    if _tracing_configured:
        return

    if not settings.TRACING_ENABLED:
        logger.info("Tracing is disabled via TRACING_ENABLED=false")
        _tracing_configured = True
        return

    service_name = settings.TRACING_SERVICE_NAME
    exporter_type = settings.TRACING_EXPORTER.lower()

    resource = Resource(attributes={SERVICE_NAME: service_name})
    _tracer_provider = TracerProvider(resource=resource)

    if exporter_type == "console":
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console tracing configured")
    elif exporter_type == "none":
        logger.info("Tracing exporter set to 'none' - no spans will be exported")
    else:
        logger.warning(f"Unknown exporter type: {exporter_type}. Spans will not be exported.")

    trace.set_tracer_provider(_tracer_provider)
    _tracing_configured = True
    logger.info(f"Tracing configured successfully (service: {service_name})")


def is_tracing_enabled() -> bool:
    return _tracer_provider is not None


def get_tracer(name: str) -> Tracer:
    """Tracer for a component. Resolves lazily against the global provider."""
    return trace.get_tracer(name)


@contextmanager
def trace_span(
    tracer: Tracer,
    span_name: str,
    attributes: Optional[dict] = None,
    set_status_on_exception: bool = True,
):
    """
    Context manager for creating a traced span.

    Example:
        with trace_span(tracer, "dispatch", {"dispatch.user_id": "u1"}) as span:
            add_span_attributes(span, {"dispatch.provider": "openai"})
    """
    with tracer.start_as_current_span(
        span_name,
        record_exception=set_status_on_exception,
        set_status_on_exception=set_status_on_exception,
    ) as span:
        if attributes:
            add_span_attributes(span, attributes)
        yield span


def set_span_error(span, error: Exception):
    """Mark a span as errored with exception details."""
    if span is not None and span.is_recording():
        span.set_status(Status(StatusCode.ERROR, str(error)))
        span.record_exception(error)


def add_span_attributes(span, attributes: dict):
    """Add attributes to a span, skipping None values."""
    if span is None or not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)
