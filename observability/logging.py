"""
Operix - Structured Logging with Trace Context

Integrates structlog with OpenTelemetry trace context propagation,
ensuring log messages emitted while a request span is active carry
trace_id and span_id for correlation.

Usage:
    from observability.logging import setup_logging, get_logger

    setup_logging(LoggingConfig(level="INFO", json_format=True))

    logger = get_logger("operix.http")
    logger.info("Request completed", path="/health", status=200)
"""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace
from structlog.types import EventDict, WrappedLogger

_configured: bool = False


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    service_name: str = field(
        default_factory=lambda: os.getenv("APP_NAME", "operix")
    )
    level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    json_format: bool = field(
        default_factory=lambda: os.getenv("LOG_FORMAT", "console").lower() == "json"
    )
    enable_trace_context: bool = True
    include_timestamp: bool = True
    environment: str = field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development")
    )

    def __post_init__(self) -> None:
        self.level = self.level.upper()


def add_trace_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds the active span's ids to log events."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_service_context(
    service_name: str,
    environment: str,
) -> structlog.types.Processor:
    """Create a processor that adds service context to all log events."""

    def processor(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict["service"] = service_name
        event_dict["environment"] = environment
        return event_dict

    return processor


def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO8601 timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def format_exception(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Summarize a passed exception object as type and message."""
    error = event_dict.get("error")
    if isinstance(error, BaseException):
        event_dict["error"] = str(error)
        event_dict["error_type"] = type(error).__name__
    return event_dict


def setup_logging(config: Optional[LoggingConfig] = None, force: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Runs once per process unless ``force`` is set, which the application
    uses when it reloads its configuration.
    """
    global _configured

    if _configured and not force:
        return

    config = config or LoggingConfig()

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context(config.service_name, config.environment),
    ]

    if config.include_timestamp:
        processors.append(add_timestamp)

    if config.enable_trace_context:
        processors.append(add_trace_context)

    processors.append(format_exception)
    processors.append(structlog.stdlib.PositionalArgumentsFormatter())
    processors.append(structlog.processors.StackInfoRenderer())
    processors.append(structlog.processors.format_exc_info)
    processors.append(structlog.processors.UnicodeDecoder())

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configure_stdlib_logging(config)

    _configured = True


def _configure_stdlib_logging(config: LoggingConfig) -> None:
    """Configure Python standard library logging."""
    level = getattr(logging, config.level, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if config.json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        # structlog already rendered the line
        handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


class _JsonFormatter(logging.Formatter):
    """JSON formatter for records that did not come through structlog."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if message.startswith("{"):
            return message

        log_record: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": message,
        }
        if record.exc_info:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(log_record, default=str)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Example:
        >>> logger = get_logger("operix.modules")
        >>> logger.info("Module initialized", module="db")
    """
    if not _configured:
        setup_logging()

    return structlog.get_logger(name)


def shutdown_logging() -> None:
    """Flush handlers and allow a later setup_logging call to reconfigure."""
    global _configured

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.flush()

    _configured = False


class LogContext:
    """
    Context manager for adding contextual information to all logs.

    Example:
        >>> with LogContext(request_id="7f3a", path="/health"):
        ...     logger.info("Handling request")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


def bind_context(**kwargs: Any) -> None:
    """Bind contextual variables to all subsequent log messages."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove contextual variables from log context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound contextual variables."""
    structlog.contextvars.clear_contextvars()
