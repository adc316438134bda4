"""
OpenTelemetry tracing setup for microservices.

Provides distributed tracing configuration and span helpers
used around job execution and view refreshes.
"""

import os
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager
import structlog

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = structlog.get_logger()


def _build_otlp_exporter_kwargs(endpoint_override: Optional[str] = None) -> Dict[str, Any]:
    endpoint = (
        endpoint_override
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or "http://otel-collector:4317"
    )
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")
    headers: Dict[str, str] = {}
    if headers_env:
        for segment in headers_env.split(","):
            if not segment or "=" not in segment:
                continue
            key, value = segment.split("=", 1)
            key = key.strip()
            if key:
                headers[key] = value.strip()

    exporter_kwargs: Dict[str, Any] = {"endpoint": endpoint}
    if headers:
        exporter_kwargs["headers"] = headers

    if endpoint.startswith("http://"):
        exporter_kwargs["insecure"] = True

    return exporter_kwargs


def setup_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    enabled: bool = True
) -> None:
    """
    Setup OpenTelemetry tracing for the service.

    Args:
        service_name: Name of the service
        endpoint: OTLP endpoint URL
        enabled: Whether tracing is enabled
    """
    if not enabled:
        logger.info("Tracing disabled by configuration")
        return

    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({"service.name": service_name})
        )
        span_exporter = OTLPSpanExporter(**_build_otlp_exporter_kwargs(endpoint))
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(tracer_provider)

        logger.info("Tracing setup complete", service=service_name, endpoint=endpoint)

    except Exception as e:
        logger.error("Failed to setup tracing", error=str(e), exc_info=True)


def get_tracer(name: Optional[str] = None):
    """Get OpenTelemetry tracer."""
    return trace.get_tracer(name or "distribution-modeling")


@asynccontextmanager
async def trace_async_function(
    name: str,
    attributes: Optional[Dict[str, Any]] = None
):
    """Trace an async block."""
    tracer = get_tracer()

    with tracer.start_as_current_span(name, record_exception=False) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise
