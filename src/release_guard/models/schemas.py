from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.release_guard.deployment.models import (
    DeploymentStatus,
    DeploymentStrategy,
    MetricSnapshot,
    SLODefinition,
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they compare with ledger records."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DeploymentCreate(BaseModel):
    id: Optional[str] = Field(default=None, description="Deployment id; generated when omitted")
    version: str = Field(default="unknown", description="Released version")
    environment: str = "production"
    commit_sha: str = ""
    commit_message: str = ""
    author: str = "unknown"
    strategy: DeploymentStrategy = DeploymentStrategy.STANDARD
    timestamp: Optional[datetime] = None
    services: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "version": "v2.4.1",
                "environment": "production",
                "commit_sha": "9f2c1ab",
                "author": "release-bot",
                "strategy": "canary",
                "services": ["api", "worker"],
            }
        }
    )

    def to_fields(self) -> Dict[str, Any]:
        """Keyword arguments for the ledger, omitting unset optional values."""
        return self.model_dump(exclude_none=True)


class StatusUpdate(BaseModel):
    status: DeploymentStatus
    duration: Optional[float] = Field(default=None, ge=0, description="Duration in milliseconds")


class DeploymentResponse(BaseModel):
    id: str
    version: str
    environment: str
    commit_sha: str
    commit_message: str
    author: str
    status: DeploymentStatus
    strategy: DeploymentStrategy
    timestamp: datetime
    duration: Optional[float] = None
    services: List[str]
    rollback_deployment_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SnapshotIn(BaseModel):
    metric_name: str
    timestamp: datetime
    value: float
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def to_snapshot(self) -> MetricSnapshot:
        return MetricSnapshot(
            metric_name=self.metric_name,
            timestamp=self.timestamp,
            value=self.value,
            labels=dict(self.labels),
        )


class AnalyzeRequest(BaseModel):
    """Either explicit snapshots, or metric names to fetch from Prometheus."""
    pre: List[SnapshotIn] = Field(default_factory=list)
    post: List[SnapshotIn] = Field(default_factory=list)
    metric_names: List[str] = Field(default_factory=list)
    window_minutes: Optional[int] = Field(default=None, gt=0)


class SLOIn(BaseModel):
    name: str
    target: float
    metric: str
    time_window: str = "30d"

    def to_definition(self) -> SLODefinition:
        return SLODefinition(
            name=self.name,
            target=self.target,
            metric=self.metric,
            time_window=self.time_window,
        )


class SLORequest(BaseModel):
    slos: List[SLOIn] = Field(..., min_length=1)


class RecommendationRequest(AnalyzeRequest):
    previous_deployment_id: Optional[str] = Field(
        default=None,
        description="Rollback target; defaults to the previous successful deployment",
    )


class CanaryRequest(BaseModel):
    canary_percentage: float = Field(..., gt=0, le=100, description="Share of traffic on the canary")
    baseline: List[SnapshotIn] = Field(..., min_length=1)
    canary: List[SnapshotIn] = Field(..., min_length=1)


class BlueGreenRequest(BaseModel):
    blue_deployment_id: str = Field(..., description="Deployment currently taking traffic")


class RollbackRequest(BaseModel):
    target_version: Optional[str] = Field(
        default=None,
        description="Version to restore; defaults to the previous successful deployment",
    )
    strategy: Optional[DeploymentStrategy] = None


class AnnotationCreate(BaseModel):
    deployment_id: str
    label: str
    timestamp: Optional[datetime] = None
    metric_name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class HealthResponse(BaseModel):
    status: str
    version: str
    service: str
