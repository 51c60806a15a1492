"""Monitoring components for the rollback engine."""

from .metrics import (
    IMPACTS_ANALYZED,
    REGRESSIONS_DETECTED,
    RECOMMENDATIONS_TOTAL,
    SLO_CHECKS,
    PrometheusMiddleware,
    metrics_endpoint,
)

from .tracing import (
    tracer,
    setup_tracing,
    set_span_attributes,
    record_exception,
    deployment_span,
)

__all__ = [
    # Metrics
    "IMPACTS_ANALYZED",
    "REGRESSIONS_DETECTED",
    "RECOMMENDATIONS_TOTAL",
    "SLO_CHECKS",
    "PrometheusMiddleware",
    "metrics_endpoint",
    # Tracing
    "tracer",
    "setup_tracing",
    "set_span_attributes",
    "record_exception",
    "deployment_span",
]
