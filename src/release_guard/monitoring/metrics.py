"""Prometheus metrics for the HTTP surface and the analysis pipeline.

Ledger and rollback metrics live next to the code that updates them
(``deployment/ledger.py``, ``deployment/rollback_executor.py``).
"""
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, Response

UNMATCHED_ROUTE = "unmatched"
UNTRACKED_PATHS = ("/metrics", "/api/healthz", "/api/ready")

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests by route template",
    ["method", "route", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)

IMPACTS_ANALYZED = Counter(
    "performance_impacts_analyzed_total",
    "Metric comparisons performed by the impact analyzer",
)

REGRESSIONS_DETECTED = Counter(
    "regressions_detected_total",
    "Regressions detected after deployments",
    ["severity"],
)

RECOMMENDATIONS_TOTAL = Counter(
    "rollback_recommendations_total",
    "Rollback recommendations by automation decision",
    ["decision"],
)

SLO_CHECKS = Counter(
    "slo_checks_total",
    "SLO compliance checks by result",
    ["result"],
)


def route_template(request: Request) -> str:
    """Matched route path, e.g. ``/api/v1/deployments/{deployment_id}``.

    Raw paths embed deployment ids and would create one series per id.
    """
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ROUTE)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Count and time requests, labelled by route template."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = route_template(request)
            REQUEST_COUNT.labels(
                method=request.method, route=route, status_code=status_code
            ).inc()
            REQUEST_LATENCY.labels(method=request.method, route=route).observe(
                time.perf_counter() - started
            )


def metrics_endpoint(request: Request):
    """Endpoint for Prometheus scraping."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
