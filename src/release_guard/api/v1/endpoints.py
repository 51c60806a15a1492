"""Deployment ledger, analysis and rollback endpoints."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from fastapi import APIRouter, HTTPException, Query, Request
from loguru import logger

from src.release_guard.core.limiter import limiter, rollback_limit
from src.release_guard.deployment.models import (
    Deployment,
    DeploymentAnnotation,
    DeploymentStatus,
    MetricSnapshot,
)
from src.release_guard.deployment.rollback_executor import LoggingProgressReporter
from src.release_guard.models.schemas import (
    AnalyzeRequest,
    AnnotationCreate,
    BlueGreenRequest,
    CanaryRequest,
    DeploymentCreate,
    DeploymentResponse,
    RecommendationRequest,
    RollbackRequest,
    SLORequest,
    StatusUpdate,
    as_utc,
)
from src.release_guard.services.engine import deployment_engine
from src.release_guard.monitoring.tracing import tracer, set_span_attributes

router = APIRouter()


async def _collect_snapshots(
    deployment: Deployment,
    body: AnalyzeRequest,
) -> Tuple[List[MetricSnapshot], List[MetricSnapshot]]:
    if body.metric_names:
        return await deployment_engine.fetch_windows(
            deployment, body.metric_names, body.window_minutes
        )
    return (
        [s.to_snapshot() for s in body.pre],
        [s.to_snapshot() for s in body.post],
    )


@router.post("/deployments", response_model=DeploymentResponse, status_code=201)
async def register_deployment(body: DeploymentCreate):
    """Register a new deployment in the ledger."""
    deployment = await deployment_engine.register_deployment(**body.to_fields())
    return deployment.to_dict()


@router.get("/deployments", response_model=List[DeploymentResponse])
async def list_deployments(
    environment: Optional[str] = None,
    status: Optional[DeploymentStatus] = None,
    since: Optional[datetime] = None,
    limit: Optional[int] = Query(default=None, gt=0),
):
    """List deployments, newest first."""
    deployments = deployment_engine.ledger.list_deployments(
        environment=environment,
        status=status,
        since=as_utc(since),
        limit=limit,
    )
    return [d.to_dict() for d in deployments]


@router.get("/deployments/compare")
async def compare_deployments(a: str, b: str):
    """Order two deployments in time."""
    return deployment_engine.compare_deployments(a, b).to_dict()


@router.get("/deployments/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(deployment_id: str):
    return deployment_engine.ledger.require(deployment_id).to_dict()


@router.patch("/deployments/{deployment_id}/status", response_model=DeploymentResponse)
async def update_status(deployment_id: str, body: StatusUpdate):
    deployment = await deployment_engine.update_status(deployment_id, body.status, body.duration)
    return deployment.to_dict()


@router.post("/deployments/{deployment_id}/analyze")
async def analyze_deployment(deployment_id: str, body: AnalyzeRequest):
    """Compare pre/post metric samples of a deployment.

    Samples are taken from the body, or fetched from Prometheus when
    ``metric_names`` is given.
    """
    deployment = deployment_engine.ledger.require(deployment_id)
    pre, post = await _collect_snapshots(deployment, body)
    impacts = deployment_engine.analyze_deployment(deployment, pre, post)
    return {
        "deployment_id": deployment.id,
        "impacts": [i.to_dict() for i in impacts],
    }


@router.post("/deployments/{deployment_id}/slo")
async def check_slo_compliance(deployment_id: str, body: SLORequest):
    deployment = deployment_engine.ledger.require(deployment_id)
    results = await deployment_engine.check_slo_compliance(
        deployment, [s.to_definition() for s in body.slos]
    )
    return {
        "deployment_id": deployment.id,
        "compliant": all(r.compliant for r in results),
        "results": [r.to_dict() for r in results],
    }


@router.post("/deployments/{deployment_id}/recommendation")
async def generate_recommendation(deployment_id: str, body: RecommendationRequest):
    """Analyze a deployment and recommend whether to roll it back."""
    deployment = deployment_engine.ledger.require(deployment_id)
    if body.previous_deployment_id:
        previous = deployment_engine.ledger.require(body.previous_deployment_id)
    else:
        previous = deployment_engine.ledger.previous_deployment(deployment)

    pre, post = await _collect_snapshots(deployment, body)
    impacts = deployment_engine.analyze_deployment(deployment, pre, post)
    recommendation = deployment_engine.generate_rollback_recommendation(
        deployment, impacts, previous
    )
    decision = deployment_engine.policy.decide(recommendation)

    return {
        "deployment_id": deployment.id,
        "decision": decision.value,
        "recommendation": recommendation.to_dict() if recommendation else None,
    }


@router.get("/deployments/{deployment_id}/recommendation")
async def get_recommendation(deployment_id: str):
    deployment_engine.ledger.require(deployment_id)
    recommendation = deployment_engine.get_recommendation(deployment_id)
    if recommendation is None:
        raise HTTPException(status_code=404, detail=f"No recommendation for {deployment_id}")
    return recommendation.to_dict()


@router.post("/deployments/{deployment_id}/canary")
async def analyze_canary(deployment_id: str, body: CanaryRequest):
    """Advise whether a canary can be promoted; baseline is the stable version."""
    deployment = deployment_engine.ledger.require(deployment_id)
    assessment = deployment_engine.analyze_canary(
        deployment,
        body.canary_percentage,
        [s.to_snapshot() for s in body.canary],
        [s.to_snapshot() for s in body.baseline],
    )
    return {"deployment_id": deployment.id, **assessment.to_dict()}


@router.post("/deployments/{deployment_id}/blue-green")
async def monitor_blue_green(deployment_id: str, body: BlueGreenRequest):
    """Advise which side of a blue-green pair should take traffic."""
    green = deployment_engine.ledger.require(deployment_id)
    blue = deployment_engine.ledger.require(body.blue_deployment_id)
    try:
        status = await deployment_engine.monitor_blue_green(blue, green)
    except (RuntimeError, ValueError) as e:
        logger.bind(deployment_id=green.id).error(f"Health probe failed: {e}")
        raise HTTPException(status_code=503, detail=f"Health probe failed: {e}")
    return {"deployment_id": green.id, **status.to_dict()}


@router.post("/deployments/{deployment_id}/rollback")
@limiter.limit(rollback_limit)
async def execute_rollback(request: Request, deployment_id: str, body: RollbackRequest):
    """
    Roll a deployment back.

    Defaults to the previous successful deployment in the same environment
    and to the deployment's own strategy.
    """
    with tracer.start_as_current_span("rollback_endpoint") as span:
        deployment = deployment_engine.ledger.require(deployment_id)

        target_version = body.target_version
        if target_version is None:
            previous = deployment_engine.ledger.previous_deployment(deployment)
            if previous is None:
                raise HTTPException(
                    status_code=409,
                    detail=f"No previous successful deployment to roll {deployment_id} back to",
                )
            target_version = previous.version

        set_span_attributes(
            span,
            deployment_id=deployment.id,
            target_version=target_version,
        )

        result = await deployment_engine.execute_rollback(
            deployment,
            target_version,
            body.strategy,
            LoggingProgressReporter(deployment.id),
        )
        if not result.success:
            logger.bind(deployment_id=deployment.id).warning(f"Rollback unsuccessful: {result.message}")
        return result.to_dict()


@router.post("/deployments/{deployment_id}/evaluate")
async def evaluate_deployment(deployment_id: str, body: AnalyzeRequest):
    """Fetch metrics, recommend, and auto-rollback when enabled and eligible."""
    if not body.metric_names:
        raise HTTPException(status_code=422, detail="metric_names must not be empty")
    evaluation = await deployment_engine.evaluate_deployment(
        deployment_id, body.metric_names, body.window_minutes
    )
    return evaluation.to_dict()


@router.post("/annotations", status_code=201)
async def add_annotation(body: AnnotationCreate):
    annotation = DeploymentAnnotation(
        deployment_id=body.deployment_id,
        timestamp=body.timestamp or datetime.now(timezone.utc),
        label=body.label,
        metric_name=body.metric_name,
        description=body.description,
    )
    await deployment_engine.add_annotation(annotation)
    return annotation.to_dict()


@router.get("/annotations")
async def list_annotations(start: Optional[datetime] = None, end: Optional[datetime] = None):
    """Annotations in [start, end]; defaults to the last 7 days."""
    end = as_utc(end) or datetime.now(timezone.utc)
    start = as_utc(start) or end - timedelta(days=7)
    return [a.to_dict() for a in deployment_engine.annotations_between(start, end)]
