"""Unit tests for canary promotion and blue-green traffic checks."""
import pytest

from src.release_guard.deployment.canary_analyzer import CanaryAnalyzer
from src.release_guard.deployment.models import Deployment, DeploymentStrategy
from src.release_guard.deployment.platform import SimulatedPlatform


@pytest.fixture
def deployment():
    return Deployment(id="deploy-7", version="v7", strategy=DeploymentStrategy.CANARY)


class TestCanaryAnalysis:
    """Test canary vs. baseline promotion decisions."""

    @pytest.fixture
    def analyzer(self):
        return CanaryAnalyzer(min_samples=5)

    def test_regressed_canary_not_promoted(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [100, 102, 98, 101, 99])
        canary = make_snapshots("http_latency_p99", [160, 162, 158, 161, 159])

        assessment = analyzer.analyze_canary(deployment, 10, canary, baseline)

        assert assessment.should_promote is False
        assert assessment.confidence > 0.99
        assert "http_latency_p99" in assessment.recommendation
        assert "Consider rollback" in assessment.recommendation
        assert len(assessment.impacts) == 1

    def test_healthy_canary_promoted(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [100, 102, 98, 101, 99])
        canary = make_snapshots("http_latency_p99", [101, 99, 100, 102, 98])

        assessment = analyzer.analyze_canary(deployment, 25, canary, baseline)

        assert assessment.should_promote is True
        assert assessment.confidence == 1.0
        assert "Safe to promote" in assessment.recommendation

    def test_insignificant_regression_blocks_promotion(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [50, 150, 50, 150, 100])
        canary = make_snapshots("http_latency_p99", [60, 200, 60, 200, 110])

        assessment = analyzer.analyze_canary(deployment, 10, canary, baseline)

        [impact] = assessment.impacts
        assert impact.is_regression is True
        assert impact.statistical_significance > 0.05
        assert assessment.should_promote is False
        assert "Consider rollback" in assessment.recommendation

    def test_too_few_canary_samples(self, deployment, make_snapshots):
        analyzer = CanaryAnalyzer(min_samples=30)
        baseline = make_snapshots("http_latency_p99", [100] * 30)
        canary = make_snapshots("http_latency_p99", [100] * 6)

        assessment = analyzer.analyze_canary(deployment, 5, canary, baseline)

        assert assessment.should_promote is False
        assert assessment.confidence == pytest.approx(0.2)
        assert "Keep observing" in assessment.recommendation

    def test_fewest_samples_bound_confidence(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [100] * 5) + make_snapshots("error_rate", [1.0] * 5)
        canary = make_snapshots("http_latency_p99", [100] * 5) + make_snapshots("error_rate", [1.0] * 2)

        assessment = analyzer.analyze_canary(deployment, 10, canary, baseline)

        assert assessment.confidence == pytest.approx(0.4)
        assert assessment.should_promote is False

    def test_no_comparable_metrics(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [100, 100])
        canary = make_snapshots("error_rate", [1.0, 1.0])

        assessment = analyzer.analyze_canary(deployment, 10, canary, baseline)

        assert assessment.should_promote is False
        assert assessment.confidence == 0.0
        assert assessment.impacts == []

    def test_to_dict(self, analyzer, deployment, make_snapshots):
        baseline = make_snapshots("http_latency_p99", [100] * 5)
        canary = make_snapshots("http_latency_p99", [100] * 5)

        data = analyzer.analyze_canary(deployment, 10, canary, baseline).to_dict()

        assert data["should_promote"] is True
        assert data["impacts"][0]["metric_name"] == "http_latency_p99"

    @pytest.mark.parametrize("kwargs", [
        {"promotion_confidence": 1.5},
        {"promotion_confidence": -0.1},
        {"healthy_ratio": 0.0},
        {"healthy_ratio": 1.1},
    ])
    def test_invalid_thresholds(self, kwargs):
        with pytest.raises(ValueError):
            CanaryAnalyzer(**kwargs)


class TestBlueGreen:
    """Test blue-green traffic recommendations."""

    @pytest.fixture
    def blue(self):
        return Deployment(id="blue-1", version="v1", strategy=DeploymentStrategy.BLUE_GREEN)

    @pytest.fixture
    def green(self):
        return Deployment(id="green-2", version="v2", strategy=DeploymentStrategy.BLUE_GREEN)

    @pytest.mark.asyncio
    async def test_healthy_green(self, blue, green):
        platform = SimulatedPlatform(healthy_instances=9, total_instances=10)

        status = await CanaryAnalyzer().monitor_blue_green(blue, green, platform)

        assert status.active_environment == "green"
        assert status.healthy_count == 9
        assert status.total_count == 10
        assert status.confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_unhealthy_green_keeps_blue(self, blue, green):
        platform = SimulatedPlatform(healthy_instances=8, total_instances=10)

        status = await CanaryAnalyzer().monitor_blue_green(blue, green, platform)

        assert status.active_environment == "blue"
        assert "Keeping traffic on blue" in status.recommendation

    @pytest.mark.asyncio
    async def test_no_instances(self, blue, green):
        platform = SimulatedPlatform(healthy_instances=0, total_instances=0)

        status = await CanaryAnalyzer().monitor_blue_green(blue, green, platform)

        assert status.active_environment == "blue"
        assert status.confidence == 0.0
