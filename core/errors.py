"""
Operix - Unified Error Handling

Provides the error hierarchy shared by the lifecycle core and the HTTP
layer.

Features:
- Hierarchical exception classes with context preservation
- Error severity levels for prioritized handling
- Structured error context for debugging
- HTTP status mapping for request-time errors
- OpenTelemetry integration for error tracing
"""

from __future__ import annotations

import asyncio
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """Error severity levels for prioritized handling."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"    # Potential problem, degraded operation
    ERROR = "error"        # Operation failed
    CRITICAL = "critical"  # Startup or lifecycle failure
    FATAL = "fatal"        # Unrecoverable, process exit required


@dataclass
class ErrorContext:
    """Structured context for error debugging and tracing."""

    operation: str
    component: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    module_name: Optional[str] = None
    request_id: Optional[str] = None
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
            "module_name": self.module_name,
            "request_id": self.request_id,
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


class OperixError(Exception):
    """
    Base exception for all Operix errors.

    Provides:
    - Structured error context
    - Severity level
    - Chained exception support
    - OpenTelemetry span recording
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "OPERIX_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self.recoverable = recoverable
        self.suggestions = suggestions or []
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
        """Convert exception to dictionary for logs and diagnostics."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
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

    def with_context(self, **kwargs: Any) -> "OperixError":
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


# =============================================================================
# Configuration and registration errors
# =============================================================================


class OperixConfigError(OperixError):
    """Configuration-related errors."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[Type] = None,
        actual_value: Any = None,
        issues: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.expected_type = expected_type
        self.actual_value = actual_value
        self.issues = list(issues or [])


class DuplicateNameError(OperixConfigError):
    """A module, service, middleware or route group name is already taken."""

    error_code = "DUPLICATE_NAME"

    def __init__(self, kind: str, name: str, **kwargs: Any):
        super().__init__(f"{kind} '{name}' is already registered", **kwargs)
        self.kind = kind
        self.name = name


class NotFoundError(OperixConfigError):
    """Lookup of an unregistered component."""

    error_code = "NOT_FOUND"
    default_severity = ErrorSeverity.ERROR

    def __init__(self, kind: str, name: str, **kwargs: Any):
        super().__init__(f"{kind} '{name}' not found", **kwargs)
        self.kind = kind
        self.name = name


class DependentsExistError(OperixConfigError):
    """Unregistering a module other modules still depend on."""

    error_code = "DEPENDENTS_EXIST"
    default_severity = ErrorSeverity.ERROR

    def __init__(self, name: str, dependents: Sequence[str], **kwargs: Any):
        super().__init__(
            f"Cannot unregister module '{name}': required by {', '.join(dependents)}",
            **kwargs,
        )
        self.name = name
        self.dependents = list(dependents)


class MissingDependencyError(OperixConfigError):
    """A module depends on a name that is not registered."""

    error_code = "MISSING_DEPENDENCY"

    def __init__(self, module: str, dependency: str, **kwargs: Any):
        super().__init__(
            f"Module '{module}' depends on '{dependency}', which is not registered",
            **kwargs,
        )
        self.module = module
        self.dependency = dependency


class CircularDependencyError(OperixConfigError):
    """The module dependency graph contains a cycle."""

    error_code = "CIRCULAR_DEPENDENCY"

    def __init__(self, module: str, cycle: Optional[Sequence[str]] = None, **kwargs: Any):
        self.module = module
        self.cycle = list(cycle or [])
        message = f"Circular dependency detected at module '{module}'"
        if self.cycle:
            message += f" ({' -> '.join(self.cycle)})"
        super().__init__(message, **kwargs)


class DuplicateRouteError(OperixConfigError):
    """A (method, pattern) pair was registered twice."""

    error_code = "DUPLICATE_ROUTE"

    def __init__(self, key: str, **kwargs: Any):
        super().__init__(f"Route '{key}' is already registered", **kwargs)
        self.key = key


class InvalidRouteError(OperixConfigError):
    """Unsupported method or malformed path pattern."""

    error_code = "INVALID_ROUTE"


# =============================================================================
# Lifecycle errors
# =============================================================================


class LifecycleError(OperixError):
    """A module or service failed to start."""

    error_code = "LIFECYCLE_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, component_name: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.component_name = component_name


class ModuleInitializationError(LifecycleError):
    """A module initializer raised; the remaining modules were not started."""

    error_code = "MODULE_INIT_FAILED"


class ServiceInitializationError(LifecycleError):
    """At least one service initializer raised."""

    error_code = "SERVICE_INIT_FAILED"

    def __init__(
        self,
        message: str,
        failures: Optional[Dict[str, BaseException]] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failures = dict(failures or {})


class MiddlewareError(OperixError):
    """Misuse of the middleware chain."""

    error_code = "MIDDLEWARE_ERROR"


class OperixTimeoutError(OperixError):
    """Timeout-related errors."""

    error_code = "TIMEOUT_ERROR"
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, recoverable=True, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.operation_name = operation


# =============================================================================
# Request-time errors
# =============================================================================


class HttpError(OperixError):
    """Error that maps directly onto an HTTP response status."""

    error_code = "HTTP_ERROR"
    default_severity = ErrorSeverity.WARNING
    status_code: int = 500
    public_message: str = "Internal Server Error"

    def to_body(self) -> Dict[str, Any]:
        """Client-facing body; never includes internal detail."""
        return {"error": self.public_message}


class BadRequestError(HttpError):
    """Malformed request framing."""

    error_code = "BAD_REQUEST"
    status_code = 400
    public_message = "Bad Request"


class PayloadTooLargeError(HttpError):
    """Request body exceeds the configured limit."""

    error_code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    public_message = "Payload Too Large"


class RequestParseError(OperixError):
    """Request body could not be decoded (answered with a 500)."""

    error_code = "REQUEST_PARSE_ERROR"


class ResponseAlreadySentError(OperixError):
    """A handler tried to write a response twice."""

    error_code = "RESPONSE_ALREADY_SENT"


ERROR_TYPE_MAP: Dict[Type[BaseException], Type[OperixError]] = {
    asyncio.TimeoutError: OperixTimeoutError,
    TimeoutError: OperixTimeoutError,
    ValueError: OperixConfigError,
}


def classify_error(error: BaseException) -> OperixError:
    """Classify a generic exception into the appropriate OperixError type."""
    if isinstance(error, OperixError):
        return error
    for error_type, operix_type in ERROR_TYPE_MAP.items():
        if isinstance(error, error_type):
            return operix_type(message=str(error), cause=error)
    return OperixError(message=str(error) or type(error).__name__, cause=error)
