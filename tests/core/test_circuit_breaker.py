import pybreaker
import pytest
from prometheus_client import REGISTRY

from src.release_guard.core.circuit_breaker import create_breaker


def prometheus_down():
    raise ConnectionError("prometheus unreachable")


def gauge(name):
    return REGISTRY.get_sample_value("circuit_breaker_state", {"service": name})


def test_breaker_opens_and_reports_state():
    breaker = create_breaker("test_prometheus", fail_max=2, reset_timeout=60)
    assert gauge("test_prometheus") == 0

    with pytest.raises(ConnectionError):
        breaker.call(prometheus_down)
    with pytest.raises(pybreaker.CircuitBreakerError):
        breaker.call(prometheus_down)

    assert breaker.current_state == pybreaker.STATE_OPEN
    assert gauge("test_prometheus") == 1

    # Open circuit short-circuits without calling through
    with pytest.raises(pybreaker.CircuitBreakerError):
        breaker.call(lambda: "ok")

    breaker.close()
    assert gauge("test_prometheus") == 0
    assert breaker.call(lambda: "ok") == "ok"
