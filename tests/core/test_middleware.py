"""Tests for request correlation and shutdown draining."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.release_guard.core.middleware import RequestContextMiddleware


@pytest.fixture
def app():
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/api/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.post("/api/v1/deployments/{deployment_id}/rollback")
    async def rollback(deployment_id: str):
        return {"in_flight": app.state.in_flight}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("platform unreachable")

    return app


def test_correlation_id_echoed(app):
    client = TestClient(app)
    response = client.get("/api/healthz", headers={"X-Correlation-ID": "pipeline-77"})

    assert response.headers["X-Correlation-ID"] == "pipeline-77"
    assert float(response.headers["X-Process-Time"]) >= 0


def test_correlation_id_generated(app):
    response = TestClient(app).get("/api/healthz")
    assert len(response.headers["X-Correlation-ID"]) == 32


def test_in_flight_tracked(app):
    client = TestClient(app)

    response = client.post("/api/v1/deployments/d1/rollback")

    assert response.json() == {"in_flight": 1}
    assert app.state.in_flight == 0


def test_draining_rejects_work_but_not_liveness(app):
    client = TestClient(app)
    app.state.shutting_down = True

    assert client.post("/api/v1/deployments/d1/rollback").status_code == 503
    assert client.get("/api/healthz").status_code == 200


def test_errors_propagate_and_release_slot(app):
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    assert app.state.in_flight == 0
