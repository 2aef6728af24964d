"""
Operix - Observability Package

Components:
- logging: structlog integration with trace context propagation
- tracing: OpenTelemetry tracer provider setup
"""
from typing import Optional

from observability.logging import (
    LogContext,
    LoggingConfig,
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    shutdown_logging,
    unbind_context,
)
from observability.tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)


def setup_observability(
    logging_config: Optional[LoggingConfig] = None,
    tracing_config: Optional[TracingConfig] = None,
) -> None:
    """Configure logging and tracing in one call at process start."""
    setup_logging(logging_config)
    setup_tracing(tracing_config)


def shutdown_observability() -> None:
    """Flush spans and log handlers."""
    shutdown_tracing()
    shutdown_logging()


__all__ = [
    "LogContext",
    "LoggingConfig",
    "TracingConfig",
    "bind_context",
    "clear_context",
    "create_span",
    "get_logger",
    "get_tracer",
    "setup_logging",
    "setup_observability",
    "setup_tracing",
    "shutdown_logging",
    "shutdown_observability",
    "shutdown_tracing",
    "unbind_context",
]
