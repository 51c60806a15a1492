"""Deployment risk analysis and rollback components."""

from .models import (
    Deployment,
    DeploymentStatus,
    DeploymentStrategy,
    RegressionSeverity,
    MetricSnapshot,
    PerformanceImpact,
    RollbackRecommendation,
    SLODefinition,
    SLOCompliance,
    DeploymentAnnotation,
    DeploymentComparison,
    RollbackStage,
    compare_deployments,
)

from .errors import (
    ReleaseGuardError,
    DeploymentNotFound,
    DuplicateDeployment,
    InvalidStatusTransition,
    PersistenceFailure,
    StageFailure,
    RollbackCancelled,
)

from .ledger import DeploymentLedger

from .impact_analyzer import (
    impact_analyzer,
    PerformanceImpactAnalyzer,
    welch_t_test,
    normal_cdf,
)

from .slo_checker import SLOComplianceChecker

from .rollback_policy import (
    rollback_policy,
    RollbackDecisionEngine,
    RollbackDecision,
)

from .canary_analyzer import (
    CanaryAnalyzer,
    CanaryAssessment,
    BlueGreenStatus,
)

from .rollback_executor import (
    RollbackExecutor,
    RollbackResult,
    ExecutorState,
    ProgressEvent,
    ProgressReporter,
    LoggingProgressReporter,
    plan_stages,
)

__all__ = [
    # Records
    "Deployment",
    "DeploymentStatus",
    "DeploymentStrategy",
    "RegressionSeverity",
    "MetricSnapshot",
    "PerformanceImpact",
    "RollbackRecommendation",
    "SLODefinition",
    "SLOCompliance",
    "DeploymentAnnotation",
    "DeploymentComparison",
    "RollbackStage",
    "compare_deployments",
    # Errors
    "ReleaseGuardError",
    "DeploymentNotFound",
    "DuplicateDeployment",
    "InvalidStatusTransition",
    "PersistenceFailure",
    "StageFailure",
    "RollbackCancelled",
    # Ledger
    "DeploymentLedger",
    # Impact analysis
    "impact_analyzer",
    "PerformanceImpactAnalyzer",
    "welch_t_test",
    "normal_cdf",
    "SLOComplianceChecker",
    # Rollback policy
    "rollback_policy",
    "RollbackDecisionEngine",
    "RollbackDecision",
    "CanaryAnalyzer",
    "CanaryAssessment",
    "BlueGreenStatus",
    # Rollback execution
    "RollbackExecutor",
    "RollbackResult",
    "ExecutorState",
    "ProgressEvent",
    "ProgressReporter",
    "LoggingProgressReporter",
    "plan_stages",
]
