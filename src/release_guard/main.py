"""Main FastAPI application."""
import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from src.release_guard.core.config import settings
from src.release_guard.core.middleware import RequestContextMiddleware
from src.release_guard.deployment.errors import (
    DeploymentNotFound,
    DuplicateDeployment,
    InvalidStatusTransition,
    PersistenceFailure,
)
from src.release_guard.monitoring.metrics import PrometheusMiddleware, metrics_endpoint
from src.release_guard.monitoring.tracing import setup_tracing
from src.release_guard.api import api_router
from src.release_guard.api.health import router as health_router
from src.release_guard.services.engine import deployment_engine
from src.release_guard.core.limiter import limiter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from src.release_guard.core.logging import setup_logging


async def _drain(app: FastAPI, grace_seconds: float) -> None:
    """Wait for in-flight requests (running rollbacks) up to the grace period."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + grace_seconds
    while app.state.in_flight > 0 and loop.time() < deadline:
        await asyncio.sleep(0.1)
    if app.state.in_flight > 0:
        logger.warning(f"⚠️  Exiting with {app.state.in_flight} requests still in flight")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle: startup and graceful shutdown."""
    logger.info("🚀 Starting Release Guard v{}", settings.VERSION)
    app.state.shutting_down = False

    logger.info(
        f"✅ Engine ready: {len(deployment_engine.ledger.list_deployments())} deployments tracked, "
        f"platform={settings.PLATFORM}, auto_rollback={settings.AUTO_ROLLBACK_ENABLED}"
    )

    yield

    logger.info("🛑 Shutting down gracefully...")
    app.state.shutting_down = True
    await _drain(app, settings.SHUTDOWN_GRACE_SECONDS)

    close = getattr(deployment_engine.metrics_source, "close", None)
    if close is not None:
        close()
    logger.info("✅ Shutdown complete")


async def _not_found_handler(request: Request, exc: DeploymentNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _conflict_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _persistence_handler(request: Request, exc: PersistenceFailure):
    logger.error(f"Ledger unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Deployment ledger unavailable", "error": str(exc)},
    )


def create_app() -> FastAPI:
    """Create FastAPI application with all middleware and routes."""

    # Setup structured logging
    setup_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.state.shutting_down = False
    app.state.in_flight = 0

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Ledger errors
    app.add_exception_handler(DeploymentNotFound, _not_found_handler)
    app.add_exception_handler(DuplicateDeployment, _conflict_handler)
    app.add_exception_handler(InvalidStatusTransition, _conflict_handler)
    app.add_exception_handler(PersistenceFailure, _persistence_handler)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(PrometheusMiddleware)

    # Setup distributed tracing
    setup_tracing(app)

    # Include routers
    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(api_router, prefix=settings.API_V1_STR)

    # Prometheus metrics endpoint
    app.add_route("/metrics", metrics_endpoint)

    logger.info("📦 Application configured successfully")

    return app


app = create_app()
