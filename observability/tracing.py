"""
Operix - Distributed Tracing with OpenTelemetry

Configures the tracer provider used by the HTTP server (one server span
per request) and by the error hierarchy (errors record onto the active
span).

Usage:
    from observability.tracing import setup_tracing, get_tracer

    setup_tracing(TracingConfig(service_name="operix"))
    tracer = get_tracer("operix.http")

    with tracer.start_as_current_span("handle") as span:
        span.set_attribute("http.route", "/health")
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
from opentelemetry.sdk.trace.sampling import ALWAYS_OFF, ALWAYS_ON, ParentBased, TraceIdRatioBased
from opentelemetry.trace import SpanKind, Status, StatusCode

_tracer_provider: Optional[TracerProvider] = None
_initialized: bool = False


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing."""

    service_name: str = field(
        default_factory=lambda: os.getenv("APP_NAME", "operix")
    )
    service_version: str = field(
        default_factory=lambda: os.getenv("APP_VERSION", "1.0.0")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "false").lower() == "true"
    )
    otlp_endpoint: Optional[str] = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
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
    extra_attributes: Dict[str, str] = field(default_factory=dict)


def setup_tracing(config: Optional[TracingConfig] = None) -> trace.TracerProvider:
    """
    Configure the global tracer provider.

    With tracing disabled the OpenTelemetry API keeps its no-op provider,
    so spans cost almost nothing and nothing is exported.
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

    if config.otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
        _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if config.console_export:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    return _tracer_provider


def get_tracer(name: str, version: str = "1.0.0") -> trace.Tracer:
    """Get a tracer instance for manual instrumentation."""
    return trace.get_tracer(name, version)


def shutdown_tracing() -> None:
    """Flush pending spans. Call this during application shutdown."""
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
    tracer_name: str = "operix",
) -> Iterator[trace.Span]:
    """Context manager for a span that records exceptions raised inside it."""
    tracer = get_tracer(tracer_name)
    with tracer.start_as_current_span(
        name, kind=kind, record_exception=False, set_status_on_exception=False
    ) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
