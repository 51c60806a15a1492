"""Unit tests for rollback recommendation and automation decisions."""
import pytest

from src.release_guard.deployment.models import (
    Deployment,
    DeploymentStrategy,
    PerformanceImpact,
    RegressionSeverity,
    RollbackRecommendation,
)
from src.release_guard.deployment.rollback_policy import (
    RollbackDecision,
    RollbackDecisionEngine,
    estimate_recovery_time,
    format_reason,
    is_auto_rollback_eligible,
    rollback_policy,
)


def make_impact(
    metric_name="http_latency_p99",
    percent_change=60.0,
    is_regression=True,
    severity=RegressionSeverity.CRITICAL,
    p_value=0.001,
):
    return PerformanceImpact(
        deployment_id="deploy-2",
        metric_name=metric_name,
        baseline=100.0,
        current=100.0 + percent_change,
        percent_change=percent_change,
        is_regression=is_regression,
        severity=severity,
        statistical_significance=p_value,
        confidence_interval=(99.0, 101.0),
        details="",
    )


@pytest.fixture
def deployment():
    return Deployment(id="deploy-2", version="v2", strategy=DeploymentStrategy.CANARY)


@pytest.fixture
def previous():
    return Deployment(id="deploy-1", version="v1")


class TestEligibility:
    """Test auto-rollback gate."""

    def test_critical_high_confidence(self):
        assert is_auto_rollback_eligible(RegressionSeverity.CRITICAL, 0.99) is True

    def test_confidence_boundary_is_exclusive(self):
        assert is_auto_rollback_eligible(RegressionSeverity.CRITICAL, 0.95) is False

    def test_high_severity_never_eligible(self):
        assert is_auto_rollback_eligible(RegressionSeverity.HIGH, 1.0) is False

    @pytest.mark.parametrize("strategy,minutes", [
        (DeploymentStrategy.BLUE_GREEN, 2),
        (DeploymentStrategy.CANARY, 10),
        (DeploymentStrategy.ROLLING, 15),
        (DeploymentStrategy.STANDARD, 5),
    ])
    def test_recovery_time(self, strategy, minutes):
        assert estimate_recovery_time(strategy) == minutes

    def test_format_reason(self):
        assert format_reason(make_impact()) == "http_latency_p99: +60.00% change (critical severity)"
        reason = format_reason(make_impact("throughput", -20.0, severity=RegressionSeverity.MEDIUM))
        assert reason == "throughput: -20.00% change (medium severity)"


class TestRollbackDecisionEngine:
    """Test recommendation building and decision mapping."""

    @pytest.fixture
    def engine(self):
        return RollbackDecisionEngine()

    def test_no_regressions(self, engine, deployment):
        impacts = [make_impact(is_regression=False, severity=RegressionSeverity.NONE)]

        assert engine.recommend(deployment, impacts) is None
        assert engine.recommend(deployment, []) is None
        assert engine.decide(None) == RollbackDecision.PROCEED

    def test_critical_recommendation(self, engine, deployment, previous):
        impacts = [
            make_impact(p_value=0.01),
            make_impact("error_rate", 20.0, severity=RegressionSeverity.MEDIUM, p_value=0.03),
            make_impact("cpu_usage", 2.0, is_regression=False, severity=RegressionSeverity.NONE, p_value=0.5),
        ]

        rec = engine.recommend(deployment, impacts, previous)

        assert rec.deployment_id == "deploy-2"
        assert rec.severity == RegressionSeverity.CRITICAL
        assert rec.confidence == pytest.approx(0.98)
        assert [m.metric_name for m in rec.affected_metrics] == ["http_latency_p99", "error_rate"]
        assert len(rec.reasons) == 2
        assert rec.estimated_recovery_time == 10
        assert rec.rollback_target == "deploy-1"
        assert rec.auto_rollback_eligible is True
        assert engine.decide(rec) == RollbackDecision.ROLLBACK_AUTO

    def test_low_confidence_needs_human(self, engine, deployment):
        rec = engine.recommend(deployment, [make_impact(p_value=0.2)])

        assert rec.confidence == pytest.approx(0.8)
        assert rec.auto_rollback_eligible is False
        assert rec.rollback_target is None
        assert engine.decide(rec) == RollbackDecision.ROLLBACK_MANUAL

    def test_insignificant_regression_still_recommended(self, engine, deployment):
        """Direction alone yields a recommendation with severity None."""
        rec = engine.recommend(
            deployment, [make_impact(severity=RegressionSeverity.NONE, p_value=0.4)]
        )

        assert rec.severity == RegressionSeverity.NONE
        assert engine.decide(rec) == RollbackDecision.ROLLBACK_MANUAL

    def test_recommendation_round_trip(self, engine, deployment, previous):
        rec = engine.recommend(deployment, [make_impact()], previous)
        assert RollbackRecommendation.from_dict(rec.to_dict()) == rec

    def test_global_instance(self):
        assert isinstance(rollback_policy, RollbackDecisionEngine)
