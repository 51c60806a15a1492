"""Request correlation, access logging and shutdown draining."""
import time
import uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from src.release_guard.core.logging import trace_id as trace_id_var
from src.release_guard.monitoring.tracing import get_current_span, set_span_attributes, record_exception

CORRELATION_HEADER = "X-Correlation-ID"

# Liveness keeps answering while draining so the orchestrator does not kill
# the pod before in-flight rollbacks finish
DRAIN_EXEMPT_PATHS = ("/api/healthz",)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and track in-flight requests.

    ``app.state.in_flight`` is read by the lifespan handler to wait for
    running rollbacks before the process exits.
    """

    async def dispatch(self, request: Request, call_next):
        state = request.app.state
        path = request.url.path

        if getattr(state, "shutting_down", False) and path not in DRAIN_EXEMPT_PATHS:
            logger.warning(f"⚠️  Rejecting {request.method} {path} while draining")
            return JSONResponse(status_code=503, content={"detail": "Service is shutting down"})

        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        trace_id_var.set(correlation_id)
        request.state.correlation_id = correlation_id

        span = get_current_span()
        set_span_attributes(span, correlation_id=correlation_id)

        log = logger.bind(correlation_id=correlation_id)
        started = time.perf_counter()
        state.in_flight = getattr(state, "in_flight", 0) + 1
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception(f"❌ {request.method} {path} failed")
            record_exception(span, e)
            raise
        finally:
            state.in_flight -= 1

        elapsed = time.perf_counter() - started
        level = "WARNING" if response.status_code >= 500 else "INFO"
        log.bind(status_code=response.status_code, latency_ms=round(elapsed * 1000, 2)).log(
            level, f"{request.method} {path} → {response.status_code}"
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response
