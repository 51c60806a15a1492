"""Unit tests for metrics collaborators and deployment window fetching."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from src.release_guard.core.circuit_breaker import metrics_breaker
from src.release_guard.deployment.metrics_source import (
    MetricsSource,
    PrometheusMetricsSource,
    StaticMetricsSource,
    TimeWindow,
    fetch_deployment_windows,
    parse_duration,
)
from src.release_guard.deployment.models import Deployment
from src.release_guard.deployment.storage import InMemorySecretStore

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_breaker():
    yield
    metrics_breaker.close()


class BrokenSource(MetricsSource):
    async def get_snapshots(self, metric_name, window):
        raise ConnectionError("prometheus unreachable")


def prometheus_response(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


class TestDurations:
    """Test duration parsing and windows."""

    @pytest.mark.parametrize("value,expected", [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("1.5h", timedelta(minutes=90)),
        ("30d", timedelta(days=30)),
        ("2w", timedelta(weeks=2)),
    ])
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "30", "5y", "d30"])
    def test_invalid_duration(self, value):
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(value)

    def test_trailing_window(self):
        window = TimeWindow.trailing("1h", end=T0)

        assert window.start == T0 - timedelta(hours=1)
        assert window.contains(T0 - timedelta(minutes=1))
        assert not window.contains(T0)

    def test_window_order(self):
        with pytest.raises(ValueError):
            TimeWindow(start=T0, end=T0 - timedelta(seconds=1))


class TestStaticMetricsSource:
    """Test in-memory metrics source."""

    @pytest.mark.asyncio
    async def test_filters_by_name_and_window(self, make_snapshots):
        source = StaticMetricsSource(make_snapshots("latency", [1, 2, 3], start=T0))
        source.add(make_snapshots("errors", [9], start=T0))

        window = TimeWindow(start=T0, end=T0 + timedelta(minutes=2))
        snapshots = await source.get_snapshots("latency", window)

        assert [s.value for s in snapshots] == [1.0, 2.0]


class TestPrometheusMetricsSource:
    """Test Prometheus query_range client."""

    @pytest.fixture
    def source(self):
        source = PrometheusMetricsSource(
            prometheus_url="http://test-prometheus:9090/",
            timeout=10,
            queries={"http_latency_p99": "histogram_quantile(0.99, rate(http_request_duration_seconds_bucket[5m]))"},
            secret_store=InMemorySecretStore({"prometheus.token": "s3cret"}),
        )
        source.client.close()
        source.client = MagicMock()
        yield source
        source.close()

    @pytest.mark.asyncio
    async def test_query_success(self, source):
        source.client.get.return_value = prometheus_response({
            "status": "success",
            "data": {
                "resultType": "matrix",
                "result": [{
                    "metric": {"__name__": "http_request_duration_seconds", "pod": "api-1"},
                    "values": [[1705320000, "0.25"], [1705320015, "NaN"], [1705320030, "0.5"]],
                }],
            },
        })

        window = TimeWindow(start=T0, end=T0 + timedelta(minutes=5))
        snapshots = await source.get_snapshots("http_latency_p99", window)

        assert [s.value for s in snapshots] == [0.25, 0.5]
        assert snapshots[0].metric_name == "http_latency_p99"
        assert snapshots[0].labels == {"pod": "api-1"}
        assert snapshots[0].timestamp == datetime.fromtimestamp(1705320000, tz=timezone.utc)

        args, kwargs = source.client.get.call_args
        assert args[0] == "http://test-prometheus:9090/api/v1/query_range"
        assert kwargs["params"]["query"].startswith("histogram_quantile")
        assert kwargs["params"]["step"] == 15
        assert kwargs["headers"] == {"Authorization": "Bearer s3cret"}

    @pytest.mark.asyncio
    async def test_unmapped_metric_sent_verbatim(self, source):
        source.client.get.return_value = prometheus_response({
            "status": "success",
            "data": {"result": [{"metric": {}, "values": [[1705320000, "1"]]}]},
        })

        window = TimeWindow(start=T0, end=T0 + timedelta(minutes=5))
        await source.get_snapshots("up", window)

        assert source.client.get.call_args.kwargs["params"]["query"] == "up"

    @pytest.mark.asyncio
    async def test_invalid_values_warn(self, source):
        source.client.get.return_value = prometheus_response({
            "status": "success",
            "data": {"result": [{"metric": {}, "values": [[1705320000, "bogus"]]}]},
        })

        window = TimeWindow(start=T0, end=T0 + timedelta(minutes=5))
        with pytest.warns(UserWarning):
            snapshots = await source.get_snapshots("up", window)

        assert snapshots == []

    @pytest.mark.asyncio
    async def test_query_error(self, source):
        source.client.get.return_value = prometheus_response({
            "status": "error",
            "error": "parse error",
        })

        window = TimeWindow(start=T0, end=T0 + timedelta(minutes=5))
        with pytest.raises(ValueError, match="Prometheus query failed"):
            await source.get_snapshots("up", window)


class TestFetchDeploymentWindows:
    """Test pre/post window slicing around a deployment."""

    @pytest.mark.asyncio
    async def test_windows_split_at_deployment(self, make_snapshots):
        deployment = Deployment(id="d1", version="v1", timestamp=T0)
        source = StaticMetricsSource(
            make_snapshots("latency", [1, 2, 3], start=T0 - timedelta(minutes=10))
            + make_snapshots("latency", [4, 5, 6], start=T0)
            + make_snapshots("latency", [99], start=T0 + timedelta(minutes=40))
            + make_snapshots("latency", [98], start=T0 - timedelta(minutes=45))
        )

        pre, post = await fetch_deployment_windows(source, deployment, ["latency"], window_minutes=30)

        assert [s.value for s in pre] == [1.0, 2.0, 3.0]
        assert [s.value for s in post] == [4.0, 5.0, 6.0]

    @pytest.mark.asyncio
    async def test_post_window_cut_at_now(self, make_snapshots):
        deployment = Deployment(id="d1", version="v1", timestamp=T0)
        source = StaticMetricsSource(make_snapshots("latency", [1, 2, 3, 4], start=T0))

        _, post = await fetch_deployment_windows(
            source, deployment, ["latency"], window_minutes=30, now=T0 + timedelta(minutes=2)
        )

        assert [s.value for s in post] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_failing_metric_skipped(self):
        deployment = Deployment(id="d1", version="v1", timestamp=T0)

        pre, post = await fetch_deployment_windows(BrokenSource(), deployment, ["latency", "errors"])

        assert pre == []
        assert post == []
