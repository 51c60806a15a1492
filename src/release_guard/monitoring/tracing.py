"""OpenTelemetry tracing for analysis, recommendation and rollback spans."""
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.trace import Span, Status, StatusCode
from fastapi import FastAPI
from loguru import logger

from src.release_guard.core.config import settings

DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"


def setup_tracing(app: FastAPI) -> None:
    """
    Install the tracer provider and instrument the app.

    ``OTEL_EXPORTER_OTLP_ENDPOINT=none`` keeps spans in-process only, which
    is what tests and local runs use.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)

    provider = TracerProvider(
        resource=Resource.create({
            "service.name": settings.PROJECT_NAME,
            "service.version": settings.VERSION,
            "deployment.environment": settings.ENV,
            "release_guard.platform": settings.PLATFORM,
        })
    )
    trace.set_tracer_provider(provider)

    if endpoint == "none":
        logger.info("Tracing enabled, span export disabled")
    else:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
        logger.info(f"✅ Exporting spans to {endpoint}")

    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics,api/healthz,api/ready")


tracer = trace.get_tracer("release_guard", settings.VERSION)


def get_current_span() -> Span:
    return trace.get_current_span()


def set_span_attributes(span: Span, **attributes: Any) -> None:
    """Set attributes, skipping None values which OpenTelemetry rejects."""
    if span is None or not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


def record_exception(span: Span, exception: Exception) -> None:
    if span is not None and span.is_recording():
        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR, str(exception)))


@contextmanager
def deployment_span(name: str, deployment, **attributes: Any) -> Iterator[Span]:
    """Span tagged with the deployment's id, version and environment."""
    with tracer.start_as_current_span(name) as span:
        set_span_attributes(
            span,
            **{
                "deployment.id": deployment.id,
                "deployment.version": deployment.version,
                "deployment.environment": deployment.environment,
            },
            **attributes,
        )
        yield span
