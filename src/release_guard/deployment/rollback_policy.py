"""Rollback decision policy.

Turns performance impacts into a rollback recommendation and decides
whether it may be executed without a human in the loop.
"""
from enum import Enum
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from .models import (
    Deployment,
    DeploymentStrategy,
    PerformanceImpact,
    RegressionSeverity,
    RollbackRecommendation,
)


class RollbackDecision(Enum):
    """Automated rollback decision types."""
    PROCEED = "proceed"  # No regressions, keep the deployment
    ROLLBACK_AUTO = "rollback_auto"  # Critical, high-confidence regression
    ROLLBACK_MANUAL = "rollback_manual"  # Needs human confirmation


# Minutes to recover, by the mechanics of each rollback path
RECOVERY_MINUTES = {
    DeploymentStrategy.BLUE_GREEN: 2,   # instant switch
    DeploymentStrategy.CANARY: 10,      # gradual traffic shift
    DeploymentStrategy.ROLLING: 15,     # instance by instance
    DeploymentStrategy.STANDARD: 5,
}

AUTO_ROLLBACK_SEVERITY = RegressionSeverity.CRITICAL
AUTO_ROLLBACK_CONFIDENCE = 0.95  # strictly greater than


def estimate_recovery_time(strategy: DeploymentStrategy) -> int:
    return RECOVERY_MINUTES.get(strategy, RECOVERY_MINUTES[DeploymentStrategy.STANDARD])


def is_auto_rollback_eligible(severity: RegressionSeverity, confidence: float) -> bool:
    """Only critical regressions with confidence above 0.95 may auto-trigger."""
    return severity == AUTO_ROLLBACK_SEVERITY and confidence > AUTO_ROLLBACK_CONFIDENCE


def format_reason(impact: PerformanceImpact) -> str:
    sign = "+" if impact.percent_change > 0 else ""
    return (
        f"{impact.metric_name}: {sign}{impact.percent_change:.2f}% change "
        f"({impact.severity.value} severity)"
    )


class RollbackDecisionEngine:
    """Produces rollback recommendations from performance impacts."""

    def recommend(
        self,
        deployment: Deployment,
        impacts: Sequence[PerformanceImpact],
        previous_deployment: Optional[Deployment] = None,
    ) -> Optional[RollbackRecommendation]:
        """Build a rollback recommendation.

        Args:
            deployment: Deployment under evaluation
            impacts: Output of the impact analyzer for this deployment
            previous_deployment: Rollback target, when already known

        Returns:
            RollbackRecommendation, or None when no impact is a regression
        """
        regressions = [impact for impact in impacts if impact.is_regression]
        if not regressions:
            return None

        severity = max(r.severity for r in regressions)

        # Lower p-values mean higher confidence in the regression set
        confidence = 1.0 - float(np.mean([r.statistical_significance for r in regressions]))

        recommendation = RollbackRecommendation(
            deployment_id=deployment.id,
            severity=severity,
            confidence=confidence,
            reasons=[format_reason(r) for r in regressions],
            affected_metrics=regressions,
            estimated_recovery_time=estimate_recovery_time(deployment.strategy),
            rollback_target=previous_deployment.id if previous_deployment else None,
            auto_rollback_eligible=is_auto_rollback_eligible(severity, confidence),
        )

        logger.bind(deployment_id=deployment.id).warning(
            f"🔄 Rollback recommendation generated for {deployment.version}: "
            f"{severity.value} severity, {confidence * 100:.1f}% confidence"
        )
        return recommendation

    def decide(self, recommendation: Optional[RollbackRecommendation]) -> RollbackDecision:
        """Map a recommendation onto the automation decision."""
        if recommendation is None:
            return RollbackDecision.PROCEED
        if recommendation.auto_rollback_eligible:
            return RollbackDecision.ROLLBACK_AUTO
        return RollbackDecision.ROLLBACK_MANUAL


# Global instance for application use
rollback_policy = RollbackDecisionEngine()
