"""
WEBCORE - Distributed Tracing with OpenTelemetry

Usage:
    from observability.tracing import setup_tracing, create_span

    setup_tracing(TracingConfig(service_name="webcore"))

    with create_span("library.load", attributes={"library.name": "db:postgres"}):
        ...

Until ``setup_tracing`` installs a provider, spans are non-recording.
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    TraceIdRatioBased,
)
from opentelemetry.trace import SpanKind, Status, StatusCode

from observability.logging import get_logger


logger = get_logger("webcore.observability.tracing")

_tracer_provider: Optional[TracerProvider] = None
_initialized: bool = False


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing."""

    service_name: str = field(
        default_factory=lambda: os.getenv("OTEL_SERVICE_NAME", "webcore")
    )
    service_version: str = "1.0.0"
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "true").lower() == "true"
    )
    sample_rate: float = field(
        default_factory=lambda: float(os.getenv("OTEL_SAMPLE_RATE", "1.0"))
    )
    environment: str = field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development")
    )
    console_export: bool = field(
        default_factory=lambda: os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    )
    batch_export: bool = True
    extra_attributes: Dict[str, str] = field(default_factory=dict)


def setup_tracing(config: Optional[TracingConfig] = None) -> trace.TracerProvider:
    """
    Configure OpenTelemetry tracing with OTLP export.

    Returns:
        The active tracer provider. A no-op provider when tracing is disabled.
    """
    global _tracer_provider, _initialized

    if _initialized and _tracer_provider:
        return _tracer_provider

    config = config or TracingConfig()

    if not config.enabled:
        _initialized = True
        return trace.get_tracer_provider()

    resource = Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "deployment.environment": config.environment,
        **config.extra_attributes,
    })

    if config.sample_rate <= 0.0:
        sampler = ALWAYS_OFF
    elif config.sample_rate >= 1.0:
        sampler = ALWAYS_ON
    else:
        sampler = ParentBased(root=TraceIdRatioBased(config.sample_rate))

    _tracer_provider = TracerProvider(resource=resource, sampler=sampler)

    exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    if config.batch_export:
        _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))

    if config.console_export:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    logger.info(
        "Tracing initialized",
        endpoint=config.otlp_endpoint,
        sample_rate=config.sample_rate,
    )
    return _tracer_provider


def get_tracer_provider() -> trace.TracerProvider:
    return _tracer_provider or trace.get_tracer_provider()


def get_tracer(name: str, version: str = "1.0.0") -> trace.Tracer:
    """Get a tracer instance for manual instrumentation."""
    return get_tracer_provider().get_tracer(name, version)


def shutdown_tracing() -> None:
    """Flush pending spans and reset tracing state."""
    global _tracer_provider, _initialized
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _initialized = False
    _tracer_provider = None


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Optional[Dict[str, Any]] = None,
    tracer_name: str = "webcore",
) -> Iterator[trace.Span]:
    """
    Context manager for creating spans with automatic error recording.

    Example:
        >>> with create_span("module.init", attributes={"module.name": "status"}):
        ...     await module.init(context)
    """
    tracer = get_tracer(tracer_name)
    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def instrument_fastapi(app: Any) -> None:
    """Auto-instrument a FastAPI application."""
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls="health",
        tracer_provider=get_tracer_provider(),
    )
