"""Pre/post deployment performance impact analysis.

Compares metric snapshots taken before and after a deployment and decides,
per metric, whether the change is a regression and how severe it is.

Significance uses Welch's t statistic with a normal approximation of the
p-value (Zelen & Severo). This is not an exact Student's t distribution; it
is accurate for the large samples typical of monitoring data and
increasingly optimistic for small ones.

Example:
    >>> analyzer = PerformanceImpactAnalyzer()
    >>> impacts = analyzer.analyze("deploy-42", pre_snapshots, post_snapshots)
    >>> [i.metric_name for i in impacts if i.is_regression]
    ['http_latency_p99']
"""
import math
from collections import OrderedDict
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .models import MetricSnapshot, PerformanceImpact, RegressionSeverity


# Metric name fragments where an increase is bad
INCREASE_IS_BAD = ("latency", "error_rate", "cpu_usage", "memory_usage", "response_time")

# Metric name fragments where a decrease is bad
DECREASE_IS_BAD = ("throughput", "success_rate", "availability", "uptime")

DIRECTIONAL_THRESHOLD = 10.0  # percent
UNKNOWN_METRIC_THRESHOLD = 20.0  # percent
SIGNIFICANCE_LEVEL = 0.05

# (lower bound exclusive on |percent change|, severity), checked in order
SEVERITY_BANDS = (
    (50.0, RegressionSeverity.CRITICAL),
    (30.0, RegressionSeverity.HIGH),
    (15.0, RegressionSeverity.MEDIUM),
    (5.0, RegressionSeverity.LOW),
)

Z_95 = 1.96


def normal_cdf(x: float) -> float:
    """Standard normal CDF, Zelen & Severo rational approximation (|err| < 7.5e-8)."""
    t = 1.0 / (1.0 + 0.2316419 * abs(x))
    d = 0.3989423 * math.exp(-x * x / 2.0)
    prob = d * t * (0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274))))
    return 1.0 - prob if x > 0 else prob


def welch_t_test(sample1: Sequence[float], sample2: Sequence[float]) -> float:
    """Two-sided p-value for a difference in means.

    Args:
        sample1: Pre-deployment values
        sample2: Post-deployment values

    Returns:
        p-value in [0, 1]; 1.0 when no difference is detectable
    """
    a = np.asarray(sample1, dtype=float)
    b = np.asarray(sample2, dtype=float)
    if a.size == 0 or b.size == 0:
        return 1.0

    pooled_variance = float(np.var(a) / a.size + np.var(b) / b.size)
    if pooled_variance == 0:
        return 1.0

    t_stat = abs(float(np.mean(a)) - float(np.mean(b))) / math.sqrt(pooled_variance)
    if t_stat == 0:
        return 1.0

    p_value = 2.0 * (1.0 - normal_cdf(t_stat))
    return max(0.0, min(1.0, p_value))


def confidence_interval(values: Sequence[float], z: float = Z_95) -> Tuple[float, float]:
    """95% confidence interval on the mean (normal approximation)."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return (0.0, 0.0)
    mean = float(np.mean(arr))
    margin = z * float(np.std(arr)) / math.sqrt(arr.size)
    return (mean - margin, mean + margin)


def is_regression(metric_name: str, percent_change: float) -> bool:
    """Decide whether a change is adverse based on the metric name."""
    lower_name = metric_name.lower()

    if any(pattern in lower_name for pattern in INCREASE_IS_BAD):
        return percent_change > DIRECTIONAL_THRESHOLD

    if any(pattern in lower_name for pattern in DECREASE_IS_BAD):
        return percent_change < -DIRECTIONAL_THRESHOLD

    # Unknown direction: any large move is suspicious
    return abs(percent_change) > UNKNOWN_METRIC_THRESHOLD


def classify_severity(percent_change: float, p_value: float) -> RegressionSeverity:
    """Severity of a change, gated on statistical significance first."""
    if p_value > SIGNIFICANCE_LEVEL:
        return RegressionSeverity.NONE

    abs_change = abs(percent_change)
    for bound, severity in SEVERITY_BANDS:
        if abs_change > bound:
            return severity
    return RegressionSeverity.NONE


def describe_impact(
    metric_name: str,
    baseline: float,
    current: float,
    percent_change: float,
    p_value: float,
) -> str:
    """Human-readable summary of one metric comparison."""
    if baseline == 0:
        return (
            f"{metric_name} baseline is zero ({baseline:.2f} → {current:.2f}); "
            f"percent change undefined, reported as 0. p={p_value:.4f}."
        )

    direction = "increased" if percent_change > 0 else "decreased"
    if p_value < 0.01:
        significance = "highly significant"
    elif p_value < SIGNIFICANCE_LEVEL:
        significance = "significant"
    else:
        significance = "not significant"

    return (
        f"{metric_name} {direction} by {abs(percent_change):.2f}% "
        f"({baseline:.2f} → {current:.2f}). "
        f"Change is statistically {significance} (p={p_value:.4f})."
    )


def group_by_metric(
    pre: Sequence[MetricSnapshot],
    post: Sequence[MetricSnapshot],
) -> "OrderedDict[str, Dict[str, List[float]]]":
    """Group snapshot values by metric name, preserving first-seen order."""
    groups: "OrderedDict[str, Dict[str, List[float]]]" = OrderedDict()

    for snapshot in pre:
        groups.setdefault(snapshot.metric_name, {"pre": [], "post": []})["pre"].append(snapshot.value)

    for snapshot in post:
        groups.setdefault(snapshot.metric_name, {"pre": [], "post": []})["post"].append(snapshot.value)

    return groups


class PerformanceImpactAnalyzer:
    """Computes per-metric impacts of a deployment. Stateless and pure."""

    def analyze(
        self,
        deployment_id: str,
        pre_snapshots: Sequence[MetricSnapshot],
        post_snapshots: Sequence[MetricSnapshot],
    ) -> List[PerformanceImpact]:
        """Compare pre- and post-deployment snapshots.

        Metrics sampled on only one side are skipped.

        Args:
            deployment_id: Deployment the snapshots belong to
            pre_snapshots: Samples from the window before the deployment
            post_snapshots: Samples from the window after the deployment

        Returns:
            One PerformanceImpact per metric present on both sides
        """
        impacts = []

        for metric_name, group in group_by_metric(pre_snapshots, post_snapshots).items():
            pre, post = group["pre"], group["post"]
            if not pre or not post:
                continue

            impacts.append(self._compare_metric(deployment_id, metric_name, pre, post))

        return impacts

    def _compare_metric(
        self,
        deployment_id: str,
        metric_name: str,
        pre: List[float],
        post: List[float],
    ) -> PerformanceImpact:
        baseline = float(np.mean(pre))
        current = float(np.mean(post))

        if baseline == 0:
            percent_change = 0.0
        else:
            percent_change = (current - baseline) / baseline * 100

        p_value = welch_t_test(pre, post)

        return PerformanceImpact(
            deployment_id=deployment_id,
            metric_name=metric_name,
            baseline=baseline,
            current=current,
            percent_change=percent_change,
            is_regression=is_regression(metric_name, percent_change),
            severity=classify_severity(percent_change, p_value),
            statistical_significance=p_value,
            confidence_interval=confidence_interval(post),
            details=describe_impact(metric_name, baseline, current, percent_change, p_value),
        )


# Global instance for application use
impact_analyzer = PerformanceImpactAnalyzer()
