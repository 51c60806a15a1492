"""Circuit breaker guarding outbound Prometheus queries.

When Prometheus is down the analysis degrades to "no data" quickly instead
of waiting out the HTTP timeout on every metric of every evaluation.
"""
import pybreaker
from prometheus_client import Gauge
from loguru import logger

from src.release_guard.core.config import settings

CIRCUIT_STATE = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state: 0=closed, 1=open, 2=half_open",
    ["service"],
)

_STATE_VALUES = {
    pybreaker.STATE_CLOSED: 0,
    pybreaker.STATE_OPEN: 1,
    pybreaker.STATE_HALF_OPEN: 2,
}


class StateGaugeListener(pybreaker.CircuitBreakerListener):
    """Mirror breaker transitions into the gauge and the log."""

    def state_change(self, cb, old_state, new_state):
        name = new_state.name
        CIRCUIT_STATE.labels(service=cb.name).set(_STATE_VALUES.get(name, 0))

        if name == pybreaker.STATE_OPEN:
            logger.error(
                f"🔴 Circuit OPEN for {cb.name} after {cb.fail_counter} failures; "
                f"retrying in {cb.reset_timeout}s"
            )
        elif name == pybreaker.STATE_HALF_OPEN:
            logger.warning(f"🟡 Circuit HALF-OPEN for {cb.name}")
        else:
            logger.info(f"🟢 Circuit CLOSED for {cb.name}")


def create_breaker(name: str, fail_max: int, reset_timeout: float) -> pybreaker.CircuitBreaker:
    breaker = pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[StateGaugeListener()],
    )
    CIRCUIT_STATE.labels(service=name).set(0)
    return breaker


metrics_breaker = create_breaker(
    "metrics_source",
    fail_max=settings.METRICS_BREAKER_FAIL_MAX,
    reset_timeout=settings.METRICS_BREAKER_RESET_SECONDS,
)
