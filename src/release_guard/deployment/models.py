"""Deployment lifecycle records and derived analysis values.

All records serialise to JSON-compatible dictionaries so the storage
collaborator only ever sees plain strings, numbers, lists and dicts.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import total_ordering
from typing import Dict, Any, List, Optional, Tuple


class DeploymentStatus(Enum):
    """Lifecycle status of a deployment."""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self is not DeploymentStatus.IN_PROGRESS


class DeploymentStrategy(Enum):
    """Deployment topology; selects the rollback stage plan."""
    STANDARD = "standard"
    CANARY = "canary"
    BLUE_GREEN = "blue_green"
    ROLLING = "rolling"


@total_ordering
class RegressionSeverity(Enum):
    """Ordered regression severity: NONE < LOW < MEDIUM < HIGH < CRITICAL."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, RegressionSeverity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(RegressionSeverity)}


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Deployment:
    """One release/version transition to an environment."""
    id: str
    version: str
    environment: str = "production"
    commit_sha: str = ""
    commit_message: str = ""
    author: str = "unknown"
    status: DeploymentStatus = DeploymentStatus.IN_PROGRESS
    strategy: DeploymentStrategy = DeploymentStrategy.STANDARD
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration: Optional[float] = None  # milliseconds
    services: List[str] = field(default_factory=list)
    rollback_deployment_id: Optional[str] = None  # set on rollback records
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Services behave as a set while keeping registration order
        self.services = list(dict.fromkeys(self.services))

    @property
    def is_rollback(self) -> bool:
        return self.rollback_deployment_id is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "version": self.version,
            "environment": self.environment,
            "commit_sha": self.commit_sha,
            "commit_message": self.commit_message,
            "author": self.author,
            "status": self.status.value,
            "strategy": self.strategy.value,
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration,
            "services": list(self.services),
            "rollback_deployment_id": self.rollback_deployment_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deployment":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            version=data["version"],
            environment=data.get("environment", "production"),
            commit_sha=data.get("commit_sha", ""),
            commit_message=data.get("commit_message", ""),
            author=data.get("author", "unknown"),
            status=DeploymentStatus(data.get("status", DeploymentStatus.IN_PROGRESS.value)),
            strategy=DeploymentStrategy(data.get("strategy", DeploymentStrategy.STANDARD.value)),
            timestamp=_parse_time(data["timestamp"]),
            duration=data.get("duration"),
            services=data.get("services", []),
            rollback_deployment_id=data.get("rollback_deployment_id"),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class MetricSnapshot:
    """A single sampled metric value."""
    metric_name: str
    timestamp: datetime
    value: float
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "labels": dict(self.labels),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricSnapshot":
        return cls(
            metric_name=data["metric_name"],
            timestamp=_parse_time(data["timestamp"]),
            value=float(data["value"]),
            labels=data.get("labels") or {},
        )


@dataclass(frozen=True)
class PerformanceImpact:
    """Pre/post comparison of one metric for one deployment."""
    deployment_id: str
    metric_name: str
    baseline: float
    current: float
    percent_change: float
    is_regression: bool
    severity: RegressionSeverity
    statistical_significance: float  # p-value
    confidence_interval: Tuple[float, float]
    details: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "deployment_id": self.deployment_id,
            "metric_name": self.metric_name,
            "baseline": self.baseline,
            "current": self.current,
            "percent_change": self.percent_change,
            "is_regression": self.is_regression,
            "severity": self.severity.value,
            "statistical_significance": self.statistical_significance,
            "confidence_interval": list(self.confidence_interval),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceImpact":
        """Create from dictionary."""
        low, high = data["confidence_interval"]
        return cls(
            deployment_id=data["deployment_id"],
            metric_name=data["metric_name"],
            baseline=data["baseline"],
            current=data["current"],
            percent_change=data["percent_change"],
            is_regression=data["is_regression"],
            severity=RegressionSeverity(data["severity"]),
            statistical_significance=data["statistical_significance"],
            confidence_interval=(low, high),
            details=data["details"],
        )


@dataclass(frozen=True)
class RollbackRecommendation:
    """Actionable rollback finding derived from at least one regression."""
    deployment_id: str
    severity: RegressionSeverity
    confidence: float  # 0-1
    reasons: List[str]
    affected_metrics: List[PerformanceImpact]
    estimated_recovery_time: int  # minutes
    rollback_target: Optional[str]
    auto_rollback_eligible: bool

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "deployment_id": self.deployment_id,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "affected_metrics": [m.to_dict() for m in self.affected_metrics],
            "estimated_recovery_time": self.estimated_recovery_time,
            "rollback_target": self.rollback_target,
            "auto_rollback_eligible": self.auto_rollback_eligible,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackRecommendation":
        """Create from dictionary."""
        return cls(
            deployment_id=data["deployment_id"],
            severity=RegressionSeverity(data["severity"]),
            confidence=data["confidence"],
            reasons=list(data["reasons"]),
            affected_metrics=[PerformanceImpact.from_dict(m) for m in data["affected_metrics"]],
            estimated_recovery_time=data["estimated_recovery_time"],
            rollback_target=data.get("rollback_target"),
            auto_rollback_eligible=data["auto_rollback_eligible"],
        )


@dataclass(frozen=True)
class SLODefinition:
    """Service level objective evaluated after a deployment."""
    name: str
    target: float  # e.g. 99.9 for 99.9% availability
    metric: str
    time_window: str = "30d"


@dataclass(frozen=True)
class SLOCompliance:
    """Target vs. actual attainment of one SLO."""
    deployment_id: str
    slo_name: str
    target: float
    actual: Optional[float]  # None when the metric could not be read
    compliant: bool
    budget: float  # error budget remaining
    time_window: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "slo_name": self.slo_name,
            "target": self.target,
            "actual": self.actual,
            "compliant": self.compliant,
            "budget": self.budget,
            "time_window": self.time_window,
        }


@dataclass(frozen=True)
class DeploymentAnnotation:
    """Chart annotation attached to a deployment."""
    deployment_id: str
    timestamp: datetime
    label: str
    metric_name: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "timestamp": self.timestamp.isoformat(),
            "label": self.label,
            "metric_name": self.metric_name,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentAnnotation":
        return cls(
            deployment_id=data["deployment_id"],
            timestamp=_parse_time(data["timestamp"]),
            label=data["label"],
            metric_name=data.get("metric_name"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class RollbackStage:
    """One atomic platform action in a rollback plan."""
    name: str
    percent: int  # progress checkpoint reported when the stage starts
    message: str
    simulated_seconds: float = 0.0  # latency modelled by the simulated platform
    instance: Optional[int] = None  # 1-based instance number for rolling plans


@dataclass(frozen=True)
class DeploymentComparison:
    """Ordering of two deployments in time."""
    older: Deployment
    newer: Deployment
    time_delta: timedelta
    version_delta: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "older": self.older.to_dict(),
            "newer": self.newer.to_dict(),
            "time_delta_ms": self.time_delta.total_seconds() * 1000,
            "version_delta": self.version_delta,
        }


def compare_deployments(a: Deployment, b: Deployment) -> DeploymentComparison:
    """Order two deployments by timestamp. Pure, no I/O."""
    older, newer = (a, b) if a.timestamp < b.timestamp else (b, a)
    return DeploymentComparison(
        older=older,
        newer=newer,
        time_delta=newer.timestamp - older.timestamp,
        version_delta=f"{older.version} → {newer.version}",
    )
