"""Advisory health checks for canary and blue-green deployments.

Both checks only recommend; they never touch the ledger. The caller decides
whether to promote, switch traffic or roll back.

Example:
    >>> analyzer = CanaryAnalyzer()
    >>> assessment = analyzer.analyze_canary(deployment, 10, canary, baseline)
    >>> if not assessment.should_promote:
    ...     await engine.execute_rollback(deployment, previous.version)
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from .impact_analyzer import PerformanceImpactAnalyzer
from .models import Deployment, MetricSnapshot, PerformanceImpact
from .platform import DeploymentPlatform


@dataclass
class CanaryAssessment:
    """Promotion recommendation for a canary."""
    should_promote: bool
    confidence: float  # 0-1
    recommendation: str
    impacts: List[PerformanceImpact] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_promote": self.should_promote,
            "confidence": self.confidence,
            "recommendation": self.recommendation,
            "impacts": [i.to_dict() for i in self.impacts],
        }


@dataclass
class BlueGreenStatus:
    """Traffic recommendation for a blue-green pair."""
    active_environment: str  # "blue" or "green"
    healthy_count: int
    total_count: int
    confidence: float
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_environment": self.active_environment,
            "healthy_count": self.healthy_count,
            "total_count": self.total_count,
            "confidence": self.confidence,
            "recommendation": self.recommendation,
        }


class CanaryAnalyzer:
    """Compares canary traffic against the stable baseline."""

    def __init__(
        self,
        impact_analyzer: Optional[PerformanceImpactAnalyzer] = None,
        min_samples: int = 30,
        promotion_confidence: float = 0.9,
        healthy_ratio: float = 0.9,
    ):
        """Initialize canary analyzer.

        Args:
            impact_analyzer: Analyzer used for metric comparison
            min_samples: Canary samples per metric needed for full confidence
            promotion_confidence: Confidence required to promote
            healthy_ratio: Healthy instance share required to switch to green
        """
        if not 0 <= promotion_confidence <= 1.0:
            raise ValueError("Promotion confidence must be between 0 and 1")
        if not 0 < healthy_ratio <= 1.0:
            raise ValueError("Healthy ratio must be in (0, 1]")

        self.impact_analyzer = impact_analyzer or PerformanceImpactAnalyzer()
        self.min_samples = max(1, min_samples)
        self.promotion_confidence = promotion_confidence
        self.healthy_ratio = healthy_ratio

    def analyze_canary(
        self,
        deployment: Deployment,
        canary_percentage: float,
        canary_snapshots: Sequence[MetricSnapshot],
        baseline_snapshots: Sequence[MetricSnapshot],
    ) -> CanaryAssessment:
        """Decide whether a canary is safe to promote.

        Baseline samples play the "pre" role and canary samples the "post"
        role of an ordinary impact analysis.
        """
        impacts = self.impact_analyzer.analyze(deployment.id, baseline_snapshots, canary_snapshots)

        if not impacts:
            assessment = CanaryAssessment(
                should_promote=False,
                confidence=0.0,
                recommendation="No comparable metrics between canary and baseline. Hold promotion.",
            )
            self._log(deployment, assessment)
            return assessment

        regressions = [i for i in impacts if i.is_regression]

        if regressions:
            confidence = 1.0 - float(np.mean([r.statistical_significance for r in regressions]))
            metrics = ", ".join(r.metric_name for r in regressions)
            assessment = CanaryAssessment(
                should_promote=False,
                confidence=confidence,
                recommendation=f"Canary showing degraded performance ({metrics}). Consider rollback.",
                impacts=impacts,
            )
        else:
            canary_counts: Dict[str, int] = {}
            for snapshot in canary_snapshots:
                canary_counts[snapshot.metric_name] = canary_counts.get(snapshot.metric_name, 0) + 1
            fewest = min(canary_counts.get(i.metric_name, 0) for i in impacts)
            confidence = min(1.0, fewest / self.min_samples)

            should_promote = confidence >= self.promotion_confidence
            if should_promote:
                recommendation = (
                    f"Canary deployment performing well ({canary_percentage}% traffic). Safe to promote."
                )
            else:
                recommendation = (
                    f"No regressions yet, but only {fewest} canary samples "
                    f"({canary_percentage}% traffic). Keep observing."
                )
            assessment = CanaryAssessment(
                should_promote=should_promote,
                confidence=confidence,
                recommendation=recommendation,
                impacts=impacts,
            )

        self._log(deployment, assessment)
        return assessment

    async def monitor_blue_green(
        self,
        blue_deployment: Deployment,
        green_deployment: Deployment,
        platform: DeploymentPlatform,
    ) -> BlueGreenStatus:
        """Recommend which environment should take traffic."""
        healthy, total = await platform.probe_health(green_deployment)
        ratio = healthy / total if total > 0 else 0.0

        if ratio >= self.healthy_ratio:
            active = "green"
            recommendation = "Green environment healthy. Safe to switch traffic."
        else:
            active = "blue"
            recommendation = "Green environment showing issues. Keeping traffic on blue."

        logger.info(
            f"🔵🟢 Blue-Green status: {healthy}/{total} healthy, active: {active} "
            f"(blue={blue_deployment.version}, green={green_deployment.version})"
        )

        return BlueGreenStatus(
            active_environment=active,
            healthy_count=healthy,
            total_count=total,
            confidence=ratio,
            recommendation=recommendation,
        )

    def _log(self, deployment: Deployment, assessment: CanaryAssessment) -> None:
        verdict = "PROMOTE" if assessment.should_promote else "HOLD"
        logger.bind(deployment_id=deployment.id).info(
            f"📊 Canary analysis: {verdict} (confidence: {assessment.confidence * 100:.1f}%)"
        )
