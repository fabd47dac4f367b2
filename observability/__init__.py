"""
WEBCORE - Observability Package

Structured logging and distributed tracing for the library registry,
its libraries and the HTTP layer.

Components:
- tracing: OpenTelemetry distributed tracing with OTLP export
- logging: Structlog integration with trace context propagation

Usage:
    from observability import setup_observability, get_logger

    setup_observability(service_name="webcore")
    logger = get_logger(__name__)
"""
from .logging import (
    LogContext,
    LoggingConfig,
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    get_tracer_provider,
    instrument_fastapi,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    # Tracing
    "setup_tracing",
    "get_tracer",
    "get_tracer_provider",
    "create_span",
    "instrument_fastapi",
    "TracingConfig",
    "shutdown_tracing",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "bind_context",
    "clear_context",
    "shutdown_logging",
    # Combined setup
    "setup_observability",
    "shutdown_observability",
]


def setup_observability(
    service_name: str = "webcore",
    otlp_endpoint: str = "http://localhost:4317",
    tracing_enabled: bool = True,
    sample_rate: float = 1.0,
    log_level: str = "INFO",
    json_logs: bool = True,
    environment: str = "development",
) -> None:
    """
    Initialize logging and tracing.

    Args:
        service_name: Name of the service for telemetry
        otlp_endpoint: OTLP collector endpoint (gRPC)
        tracing_enabled: Export spans when True
        sample_rate: Trace sampling rate (0.0-1.0)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Render logs as JSON instead of console output
        environment: Deployment environment
    """
    setup_logging(LoggingConfig(
        service_name=service_name,
        level=log_level,
        json_format=json_logs,
        environment=environment,
    ))

    setup_tracing(TracingConfig(
        service_name=service_name,
        otlp_endpoint=otlp_endpoint,
        enabled=tracing_enabled,
        sample_rate=sample_rate,
        environment=environment,
    ))


def shutdown_observability() -> None:
    """Flush telemetry during application shutdown."""
    shutdown_tracing()
    shutdown_logging()
