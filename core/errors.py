"""
WEBCORE - Unified Error Handling

Provides the error hierarchy shared by the library registry, the
application context, the bundled libraries and the HTTP layer.

Features:
- Hierarchical exception classes with context preservation
- Error severity levels for prioritized handling
- Structured error context for debugging
- OpenTelemetry integration for error tracing
- API error codes for the standard response envelope
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """Error severity levels for prioritized handling."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    FATAL = "fatal"


class ApiErrorCode(int, Enum):
    """Numeric error codes exposed in API responses."""

    INTERNAL = 1
    UNAUTHORIZED = 2
    NOT_FOUND = 3
    INVALID_REQUEST = 4
    UNAVAILABLE = 5


@dataclass
class ErrorContext:
    """Structured context for error debugging and tracing."""

    operation: str
    component: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    library: Optional[str] = None
    instance_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            "operation": self.operation,
            "component": self.component,
            "timestamp": self.timestamp.isoformat(),
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "library": self.library,
            "instance_key": self.instance_key,
            "metadata": self.metadata,
            "stack_trace": self.stack_trace,
        }

    @classmethod
    def from_current_span(
        cls,
        operation: str,
        component: str,
        **kwargs: Any
    ) -> "ErrorContext":
        """Create context from current OpenTelemetry span."""
        span = trace.get_current_span()
        trace_id = None
        span_id = None

        if span and span.is_recording():
            ctx = span.get_span_context()
            if ctx.is_valid:
                trace_id = format(ctx.trace_id, "032x")
                span_id = format(ctx.span_id, "016x")

        return cls(
            operation=operation,
            component=component,
            trace_id=trace_id,
            span_id=span_id,
            stack_trace=traceback.format_exc(),
            **kwargs
        )


class WebcoreError(Exception):
    """
    Base exception for all webcore errors.

    Provides:
    - Structured error context
    - Severity level
    - Chained exception support
    - OpenTelemetry span recording
    - HTTP status and API error code for the response envelope
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "WEBCORE_ERROR"
    status_code: int = 500
    api_error: ApiErrorCode = ApiErrorCode.INTERNAL

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

        self._record_to_span()

    def _record_to_span(self) -> None:
        """Record exception to current OpenTelemetry span."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_status(Status(StatusCode.ERROR, self.message))
            span.record_exception(self)
            span.set_attribute("error.code", self.error_code)
            span.set_attribute("error.severity", self.severity.value)
            span.set_attribute("error.recoverable", self.recoverable)
            if self.context:
                span.set_attribute("error.component", self.context.component)
                span.set_attribute("error.operation", self.context.operation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            parts.append(f" (component: {self.context.component})")
        if self.cause:
            parts.append(f" [caused by: {self.cause}]")
        return "".join(parts)

    def with_context(self, **kwargs: Any) -> "WebcoreError":
        """Add additional context to the error."""
        if self.context:
            self.context.metadata.update(kwargs)
        else:
            self.context = ErrorContext(
                operation="unknown",
                component="unknown",
                metadata=kwargs
            )
        return self


class WebcoreConfigError(WebcoreError):
    """Configuration and wiring errors."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[Type] = None,
        actual_value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.expected_type = expected_type
        self.actual_value = actual_value


class LibraryError(WebcoreError):
    """Errors raised by the library registry and its loaders."""

    error_code = "LIBRARY_ERROR"

    def __init__(
        self,
        message: str,
        library: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.library = library
        self.key = key


class LibraryNotFoundError(LibraryError):
    """A loader or cached instance required by the caller is absent."""

    error_code = "LIBRARY_NOT_FOUND"
    default_severity = ErrorSeverity.WARNING
    status_code = 404
    api_error = ApiErrorCode.NOT_FOUND


class LibraryLoadError(LibraryError):
    """Construction of a library instance failed during install or connect."""

    error_code = "LIBRARY_LOAD_ERROR"
    status_code = 503
    api_error = ApiErrorCode.UNAVAILABLE


class LibraryTeardownError(LibraryError):
    """Disconnect or uninstall of a cached instance failed."""

    error_code = "LIBRARY_TEARDOWN_ERROR"

    def __init__(
        self,
        message: str,
        stage: str = "uninstall",
        **kwargs: Any,
    ):
        super().__init__(message, recoverable=True, **kwargs)
        self.stage = stage


class LibraryContractError(LibraryError):
    """A value does not satisfy the library capability it was built for."""

    error_code = "LIBRARY_CONTRACT_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        offending_type: Optional[type] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.offending_type = offending_type


class WebcoreDatabaseError(WebcoreError):
    """Database operation errors."""

    error_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        query: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.database = database
        self.query = query


class AuthError(WebcoreError):
    """Request rejected by the authentication chain."""

    error_code = "UNAUTHORIZED"
    default_severity = ErrorSeverity.WARNING
    status_code = 401
    api_error = ApiErrorCode.UNAUTHORIZED

    def __init__(
        self,
        message: str = "unauthorized",
        stage: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.stage = stage
