import os
import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

# Disable OTLP export and simulated stage latency during tests
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = "none"
os.environ["SIMULATION_DELAY_SCALE"] = "0"
os.environ["SHUTDOWN_GRACE_SECONDS"] = "0"
os.environ["STORE_BACKEND"] = "memory"

# Import app AFTER setting the environment variables
from src.release_guard.main import app
from src.release_guard.deployment.models import MetricSnapshot

BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def client():
    # Context manager triggers the lifespan events (startup/shutdown)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_snapshots():
    """Factory building one snapshot per value, a minute apart."""
    def _make(metric_name, values, start=BASE_TIME):
        return [
            MetricSnapshot(
                metric_name=metric_name,
                timestamp=start + timedelta(minutes=i),
                value=float(v),
            )
            for i, v in enumerate(values)
        ]
    return _make
