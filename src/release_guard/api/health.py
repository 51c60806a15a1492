"""Liveness and readiness probes."""
from fastapi import APIRouter, Response, status
from prometheus_client import Gauge
from loguru import logger

from src.release_guard.core.config import settings
from src.release_guard.core.circuit_breaker import metrics_breaker
from src.release_guard.deployment.ledger import DEPLOYMENTS_KEY
from src.release_guard.models.schemas import HealthResponse
from src.release_guard.services.engine import deployment_engine

router = APIRouter()

SERVICE_READY = Gauge("service_ready", "1 when the engine can take rollback decisions")


def _store_readable() -> bool:
    try:
        deployment_engine.store.get(DEPLOYMENTS_KEY)
    except Exception as e:
        logger.error(f"Ledger store unreadable: {e}")
        return False
    return True


@router.get("/healthz", response_model=HealthResponse)
async def healthz():
    return HealthResponse(status="ok", version=settings.VERSION, service=settings.PROJECT_NAME)


@router.get("/ready")
async def ready(response: Response):
    """
    Ready when decisions can be taken and recorded.

    The ledger store must be readable and the Prometheus breaker must not be
    open; with an open breaker every analysis would come back empty.
    """
    checks = {
        "store_readable": _store_readable(),
        "circuit_breaker_closed": metrics_breaker.current_state != "open",
    }
    is_ready = all(checks.values())
    SERVICE_READY.set(int(is_ready))

    if not is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(f"Not ready: {checks}")

    return {
        "status": "ready" if is_ready else "not_ready",
        "checks": checks,
        "circuit_state": metrics_breaker.current_state,
        "deployments_tracked": len(deployment_engine.ledger.list_deployments()),
        "platform": settings.PLATFORM,
        "auto_rollback_enabled": deployment_engine.auto_rollback_enabled,
    }
