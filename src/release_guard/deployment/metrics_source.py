"""Metrics collaborators supplying MetricSnapshot samples.

The analysis code never fetches metrics itself; callers obtain pre/post
windows from a ``MetricsSource`` and hand the snapshots over.
"""
import asyncio
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import warnings

import httpx
from loguru import logger

from src.release_guard.core.circuit_breaker import metrics_breaker
from .models import Deployment, MetricSnapshot
from .storage import SecretStore


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhdw])\s*$")
_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as ``"30d"``, ``"15m"`` or ``"1.5h"``.

    Raises:
        ValueError: If the string is not a supported duration
    """
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: float(amount)})


@dataclass(frozen=True)
class TimeWindow:
    """Half-open sampling window [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError("Window end must not precede its start")

    @classmethod
    def trailing(cls, duration: str, end: Optional[datetime] = None) -> "TimeWindow":
        """Window of the given duration ending at ``end`` (default: now)."""
        end = end or datetime.now(timezone.utc)
        return cls(start=end - parse_duration(duration), end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class MetricsSource(ABC):
    """Provider of sampled metric values."""

    @abstractmethod
    async def get_snapshots(self, metric_name: str, window: TimeWindow) -> List[MetricSnapshot]:
        """Return all samples of a metric inside the window."""
        pass


class StaticMetricsSource(MetricsSource):
    """In-memory metrics source over a fixed list of snapshots."""

    def __init__(self, snapshots: Optional[Iterable[MetricSnapshot]] = None):
        self.snapshots: List[MetricSnapshot] = list(snapshots or [])

    def add(self, snapshots: Iterable[MetricSnapshot]) -> None:
        self.snapshots.extend(snapshots)

    async def get_snapshots(self, metric_name: str, window: TimeWindow) -> List[MetricSnapshot]:
        return [
            s for s in self.snapshots
            if s.metric_name == metric_name and window.contains(s.timestamp)
        ]


class PrometheusMetricsSource(MetricsSource):
    """Fetches metric samples from the Prometheus ``query_range`` API.

    Metric names map to PromQL through ``queries``; names without a mapping
    are sent as the query verbatim. Requests run in a worker thread behind
    the ``metrics_source`` circuit breaker.
    """

    def __init__(
        self,
        prometheus_url: str = "http://prometheus:9090",
        timeout: int = 30,
        step_seconds: int = 15,
        queries: Optional[Dict[str, str]] = None,
        secret_store: Optional[SecretStore] = None,
    ):
        """Initialize Prometheus metrics source.

        Args:
            prometheus_url: Prometheus server URL
            timeout: Request timeout in seconds
            step_seconds: Query resolution step
            queries: Metric name to PromQL expression mapping
            secret_store: Optional store holding ``prometheus.token``
        """
        self.prometheus_url = prometheus_url.rstrip("/")
        self.timeout = timeout
        self.step_seconds = step_seconds
        self.queries = dict(queries or {})
        self.secret_store = secret_store
        self.client = httpx.Client(timeout=timeout)

    async def get_snapshots(self, metric_name: str, window: TimeWindow) -> List[MetricSnapshot]:
        """Fetch samples for a metric.

        Raises:
            httpx.HTTPError: If the Prometheus request fails
            pybreaker.CircuitBreakerError: If the breaker is open
            ValueError: If Prometheus reports a query error
        """
        query = self.queries.get(metric_name, metric_name)
        logger.debug(f"Querying Prometheus for {metric_name}: {query}")

        data = await asyncio.to_thread(
            metrics_breaker.call, self._query_range, query, window
        )
        return self._parse_matrix(metric_name, data)

    def _headers(self) -> Dict[str, str]:
        token = self.secret_store.get("prometheus.token") if self.secret_store else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _query_range(self, query: str, window: TimeWindow) -> Dict:
        """Execute a range query and return the ``data`` section."""
        url = f"{self.prometheus_url}/api/v1/query_range"
        params = {
            "query": query,
            "start": window.start.timestamp(),
            "end": window.end.timestamp(),
            "step": self.step_seconds,
        }

        response = self.client.get(url, params=params, headers=self._headers())
        response.raise_for_status()

        payload = response.json()
        if payload.get("status") != "success":
            raise ValueError(f"Prometheus query failed: {payload}")
        return payload["data"]

    def _parse_matrix(self, metric_name: str, data: Dict) -> List[MetricSnapshot]:
        snapshots = []
        for series in data.get("result", []):
            labels = {k: v for k, v in series.get("metric", {}).items() if k != "__name__"}
            for ts, raw in series.get("values", []):
                try:
                    value = float(raw)
                except (ValueError, TypeError):
                    warnings.warn(f"Invalid metric value for {metric_name}: {raw}")
                    continue
                if math.isnan(value) or math.isinf(value):
                    continue
                snapshots.append(MetricSnapshot(
                    metric_name=metric_name,
                    timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc),
                    value=value,
                    labels=labels,
                ))

        if not snapshots:
            warnings.warn(f"No data returned for metric: {metric_name}")
        return snapshots

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()


async def fetch_deployment_windows(
    source: MetricsSource,
    deployment: Deployment,
    metric_names: Sequence[str],
    window_minutes: int = 30,
    now: Optional[datetime] = None,
) -> Tuple[List[MetricSnapshot], List[MetricSnapshot]]:
    """Fetch pre- and post-deployment samples around a deployment.

    The pre window is the ``window_minutes`` before the deployment timestamp;
    the post window starts at the timestamp and is cut off at ``now``.
    Metrics that fail to load are logged and skipped.

    Returns:
        Tuple of (pre_snapshots, post_snapshots)
    """
    span = timedelta(minutes=window_minutes)
    now = now or datetime.now(timezone.utc)
    pre_window = TimeWindow(start=deployment.timestamp - span, end=deployment.timestamp)
    post_window = TimeWindow(
        start=deployment.timestamp,
        end=max(deployment.timestamp, min(deployment.timestamp + span, now)),
    )

    pre: List[MetricSnapshot] = []
    post: List[MetricSnapshot] = []

    for metric_name in metric_names:
        try:
            before, after = await asyncio.gather(
                source.get_snapshots(metric_name, pre_window),
                source.get_snapshots(metric_name, post_window),
            )
        except Exception as e:
            logger.error(f"Failed to fetch {metric_name} for {deployment.id}: {e}")
            continue

        pre.extend(before)
        post.extend(after)

    logger.info(
        f"Fetched {len(pre)} pre and {len(post)} post samples for {deployment.version} "
        f"over {window_minutes} minutes"
    )
    return pre, post
