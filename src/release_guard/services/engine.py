"""Deployment engine facade wiring ledger, analysis and rollback together."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from src.release_guard.core.config import Settings, settings
from src.release_guard.deployment.canary_analyzer import BlueGreenStatus, CanaryAnalyzer, CanaryAssessment
from src.release_guard.deployment.errors import PersistenceFailure
from src.release_guard.deployment.impact_analyzer import PerformanceImpactAnalyzer
from src.release_guard.deployment.ledger import DeploymentLedger
from src.release_guard.deployment.metrics_source import (
    MetricsSource,
    PrometheusMetricsSource,
    fetch_deployment_windows,
)
from src.release_guard.deployment.models import (
    Deployment,
    DeploymentAnnotation,
    DeploymentComparison,
    DeploymentStatus,
    DeploymentStrategy,
    MetricSnapshot,
    PerformanceImpact,
    RegressionSeverity,
    RollbackRecommendation,
    SLOCompliance,
    SLODefinition,
)
from src.release_guard.deployment.platform import (
    CommandPlatform,
    DeploymentPlatform,
    SimulatedPlatform,
)
from src.release_guard.deployment.rollback_executor import (
    ProgressReporter,
    RollbackExecutor,
    RollbackResult,
)
from src.release_guard.deployment.rollback_policy import RollbackDecision, RollbackDecisionEngine
from src.release_guard.deployment.slo_checker import SLOComplianceChecker
from src.release_guard.deployment.storage import EnvSecretStore, KeyValueStore, create_store
from src.release_guard.monitoring.metrics import (
    IMPACTS_ANALYZED,
    RECOMMENDATIONS_TOTAL,
    REGRESSIONS_DETECTED,
    SLO_CHECKS,
)
from src.release_guard.monitoring.tracing import deployment_span, set_span_attributes

RECOMMENDATION_KEY_PREFIX = "cicd.recommendation."


@dataclass
class DeploymentEvaluation:
    """Result of the end-to-end evaluate-and-rollback pipeline."""
    deployment_id: str
    impacts: List[PerformanceImpact]
    recommendation: Optional[RollbackRecommendation]
    decision: RollbackDecision
    rollback: Optional[RollbackResult] = None
    escalated: bool = False
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "impacts": [i.to_dict() for i in self.impacts],
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "decision": self.decision.value,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "escalated": self.escalated,
            "notes": list(self.notes),
        }


class DeploymentEngine:
    """Entry point for pipelines and the HTTP API."""

    def __init__(
        self,
        ledger: DeploymentLedger,
        metrics_source: MetricsSource,
        platform: DeploymentPlatform,
        store: KeyValueStore,
        analyzer: Optional[PerformanceImpactAnalyzer] = None,
        policy: Optional[RollbackDecisionEngine] = None,
        canary_analyzer: Optional[CanaryAnalyzer] = None,
        stage_timeout: float = 300.0,
        rolling_instances: int = 5,
        auto_rollback_enabled: bool = False,
        comparison_window_minutes: int = 30,
    ):
        self.ledger = ledger
        self.metrics_source = metrics_source
        self.platform = platform
        self.store = store
        self.analyzer = analyzer or PerformanceImpactAnalyzer()
        self.policy = policy or RollbackDecisionEngine()
        self.canary_analyzer = canary_analyzer or CanaryAnalyzer(self.analyzer)
        self.slo_checker = SLOComplianceChecker(metrics_source)
        self.executor = RollbackExecutor(
            ledger,
            platform,
            stage_timeout=stage_timeout,
            rolling_instances=rolling_instances,
        )
        self.auto_rollback_enabled = auto_rollback_enabled
        self.comparison_window_minutes = comparison_window_minutes

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "DeploymentEngine":
        """Build an engine from application settings."""
        config = config or settings
        store = create_store(config.STORE_BACKEND, config.STORE_PATH)

        platform: DeploymentPlatform
        if config.PLATFORM == "simulated":
            platform = SimulatedPlatform(delay_scale=config.SIMULATION_DELAY_SCALE)
        elif config.PLATFORM == "command":
            platform = CommandPlatform(
                config.PLATFORM_STAGE_COMMANDS,
                health_command=config.PLATFORM_HEALTH_COMMAND,
            )
        else:
            raise ValueError(f"Unknown platform: {config.PLATFORM}")

        metrics_source = PrometheusMetricsSource(
            prometheus_url=config.PROMETHEUS_URL,
            timeout=config.PROMETHEUS_TIMEOUT,
            step_seconds=config.PROMETHEUS_STEP_SECONDS,
            secret_store=EnvSecretStore(),
        )
        analyzer = PerformanceImpactAnalyzer()

        return cls(
            ledger=DeploymentLedger(store),
            metrics_source=metrics_source,
            platform=platform,
            store=store,
            analyzer=analyzer,
            canary_analyzer=CanaryAnalyzer(
                analyzer,
                min_samples=config.CANARY_MIN_SAMPLES,
                promotion_confidence=config.CANARY_PROMOTION_CONFIDENCE,
                healthy_ratio=config.BLUE_GREEN_HEALTHY_RATIO,
            ),
            stage_timeout=config.STAGE_TIMEOUT_SECONDS,
            rolling_instances=config.ROLLING_INSTANCE_COUNT,
            auto_rollback_enabled=config.AUTO_ROLLBACK_ENABLED,
            comparison_window_minutes=config.COMPARISON_WINDOW_MINUTES,
        )

    # Ledger

    async def register_deployment(self, **fields: Any) -> Deployment:
        return await self.ledger.register_deployment(**fields)

    async def update_status(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        duration: Optional[float] = None,
    ) -> Deployment:
        return await self.ledger.update_status(deployment_id, status, duration)

    def compare_deployments(self, deployment_id_a: str, deployment_id_b: str) -> DeploymentComparison:
        return self.ledger.compare(deployment_id_a, deployment_id_b)

    async def add_annotation(self, annotation: DeploymentAnnotation) -> DeploymentAnnotation:
        self.ledger.require(annotation.deployment_id)
        await self.ledger.add_annotation(annotation)
        return annotation

    def annotations_between(self, start: datetime, end: datetime) -> List[DeploymentAnnotation]:
        return self.ledger.annotations_between(start, end)

    # Analysis

    async def fetch_windows(
        self,
        deployment: Deployment,
        metric_names: Sequence[str],
        window_minutes: Optional[int] = None,
    ):
        """Pre/post samples around the deployment from the metrics source."""
        return await fetch_deployment_windows(
            self.metrics_source,
            deployment,
            metric_names,
            window_minutes or self.comparison_window_minutes,
        )

    def analyze_deployment(
        self,
        deployment: Deployment,
        pre: Sequence[MetricSnapshot],
        post: Sequence[MetricSnapshot],
    ) -> List[PerformanceImpact]:
        """Analyze performance impact of a deployment."""
        with deployment_span("impact.analyze", deployment) as span:
            impacts = self.analyzer.analyze(deployment.id, pre, post)
            IMPACTS_ANALYZED.inc(len(impacts))

            log = logger.bind(deployment_id=deployment.id)
            regressions = 0
            for impact in impacts:
                if impact.is_regression and impact.severity != RegressionSeverity.NONE:
                    regressions += 1
                    REGRESSIONS_DETECTED.labels(severity=impact.severity.value).inc()
                    log.warning(
                        f"  Regression detected: {impact.metric_name} changed by "
                        f"{impact.percent_change:.2f}% (p={impact.statistical_significance:.4f})"
                    )

            skipped = {s.metric_name for s in list(pre) + list(post)} - {i.metric_name for i in impacts}
            if skipped:
                log.warning(f"Skipped metrics sampled on one side only: {sorted(skipped)}")

            set_span_attributes(span, metrics_compared=len(impacts), regressions=regressions)
        return impacts

    async def check_slo_compliance(
        self,
        deployment: Deployment,
        slos: Sequence[SLODefinition],
    ) -> List[SLOCompliance]:
        results = await self.slo_checker.check(deployment, slos)
        for result in results:
            if result.actual is None:
                SLO_CHECKS.labels(result="no_data").inc()
            else:
                SLO_CHECKS.labels(result="compliant" if result.compliant else "violated").inc()
        return results

    # Canary and blue-green checks

    def analyze_canary(
        self,
        deployment: Deployment,
        canary_percentage: float,
        canary: Sequence[MetricSnapshot],
        baseline: Sequence[MetricSnapshot],
    ) -> CanaryAssessment:
        """Advisory promotion check; never changes the ledger."""
        with deployment_span("canary.analyze", deployment) as span:
            assessment = self.canary_analyzer.analyze_canary(deployment, canary_percentage, canary, baseline)
            set_span_attributes(
                span,
                canary_percentage=canary_percentage,
                should_promote=assessment.should_promote,
            )
        return assessment

    async def monitor_blue_green(self, blue: Deployment, green: Deployment) -> BlueGreenStatus:
        with deployment_span("blue_green.monitor", green) as span:
            status = await self.canary_analyzer.monitor_blue_green(blue, green, self.platform)
            set_span_attributes(span, active_environment=status.active_environment)
        return status

    def generate_rollback_recommendation(
        self,
        deployment: Deployment,
        impacts: Sequence[PerformanceImpact],
        previous_deployment: Optional[Deployment] = None,
    ) -> Optional[RollbackRecommendation]:
        """Generate and persist a rollback recommendation.

        Persisting is best effort: the recommendation is returned even if
        the store write fails.
        """
        with deployment_span("rollback.recommend", deployment) as span:
            recommendation = self.policy.recommend(deployment, impacts, previous_deployment)
            decision = self.policy.decide(recommendation)
            RECOMMENDATIONS_TOTAL.labels(decision=decision.value).inc()
            set_span_attributes(span, decision=decision.value)

        if recommendation is not None:
            try:
                self.store.set(
                    RECOMMENDATION_KEY_PREFIX + deployment.id,
                    recommendation.to_dict(),
                )
            except Exception as e:
                logger.bind(deployment_id=deployment.id).error(
                    f"Failed to persist rollback recommendation: {e}"
                )
        return recommendation

    def get_recommendation(self, deployment_id: str) -> Optional[RollbackRecommendation]:
        data = self.store.get(RECOMMENDATION_KEY_PREFIX + deployment_id)
        return RollbackRecommendation.from_dict(data) if data else None

    # Rollback

    async def execute_rollback(
        self,
        deployment: Deployment,
        target_version: str,
        strategy: Optional[DeploymentStrategy] = None,
        reporter: Optional[ProgressReporter] = None,
    ) -> RollbackResult:
        """Execute a rollback; strategy defaults to the deployment's own."""
        return await self.executor.execute(
            deployment,
            target_version,
            strategy or deployment.strategy,
            reporter,
        )

    async def evaluate_deployment(
        self,
        deployment_id: str,
        metric_names: Sequence[str],
        window_minutes: Optional[int] = None,
        auto_rollback: Optional[bool] = None,
    ) -> DeploymentEvaluation:
        """Fetch metrics, analyze, recommend and optionally auto-rollback.

        Auto-rollback only runs when enabled, when the recommendation is
        eligible and when a previous deployment can be resolved as target.
        A ledger failure while recording the rollback escalates to a human
        instead of reporting success.

        Raises:
            DeploymentNotFound: Unknown deployment id
        """
        deployment = self.ledger.require(deployment_id)
        auto = self.auto_rollback_enabled if auto_rollback is None else auto_rollback

        pre, post = await self.fetch_windows(deployment, metric_names, window_minutes)
        impacts = self.analyze_deployment(deployment, pre, post)

        previous = self.ledger.previous_deployment(deployment)
        recommendation = self.generate_rollback_recommendation(deployment, impacts, previous)
        decision = self.policy.decide(recommendation)

        evaluation = DeploymentEvaluation(
            deployment_id=deployment.id,
            impacts=impacts,
            recommendation=recommendation,
            decision=decision,
        )

        if decision != RollbackDecision.ROLLBACK_AUTO:
            return evaluation

        log = logger.bind(deployment_id=deployment.id, audit=True)
        if not auto:
            evaluation.notes.append("Auto-rollback eligible but disabled; manual confirmation required")
            return evaluation

        if previous is None:
            evaluation.escalated = True
            evaluation.notes.append("No previous successful deployment to roll back to")
            log.error("Auto-rollback eligible but no rollback target; escalating")
            return evaluation

        try:
            evaluation.rollback = await self.execute_rollback(deployment, previous.version)
        except PersistenceFailure as e:
            evaluation.escalated = True
            evaluation.notes.append(f"Rollback not confirmed: {e}")
            log.error(f"Rollback not confirmed, escalating: {e}")
            return evaluation

        if not evaluation.rollback.success:
            evaluation.escalated = True
            evaluation.notes.append(evaluation.rollback.message)
        return evaluation


# Global instance
deployment_engine = DeploymentEngine.from_settings()
