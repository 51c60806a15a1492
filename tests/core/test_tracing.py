"""Tests for deployment-scoped spans."""
import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from src.release_guard.deployment.models import Deployment
from src.release_guard.monitoring.tracing import deployment_span, record_exception

# Provider installed by setup_tracing when conftest imports the app
_exporter = InMemorySpanExporter()
trace.get_tracer_provider().add_span_processor(SimpleSpanProcessor(_exporter))


@pytest.fixture
def exporter():
    _exporter.clear()
    yield _exporter
    _exporter.clear()


def test_deployment_span_attributes(exporter):
    deployment = Deployment(id="deploy-3", version="v3", environment="staging")

    with deployment_span("rollback.execute", deployment, strategy="canary", target_version=None):
        pass

    [span] = exporter.get_finished_spans()
    assert span.name == "rollback.execute"
    assert span.attributes["deployment.id"] == "deploy-3"
    assert span.attributes["deployment.environment"] == "staging"
    assert span.attributes["strategy"] == "canary"
    assert "target_version" not in span.attributes


def test_record_exception_marks_error(exporter):
    deployment = Deployment(id="deploy-4", version="v4")

    with deployment_span("rollback.execute", deployment) as span:
        record_exception(span, RuntimeError("stage timed out"))

    [finished] = exporter.get_finished_spans()
    assert finished.status.status_code == StatusCode.ERROR
    assert finished.events[0].name == "exception"
