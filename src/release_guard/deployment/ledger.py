"""Deployment ledger: the single source of truth for deployment lifecycle.

The ledger owns every ``Deployment`` record, the chart annotations and the
rollback-history index (original deployment id -> rollback record id). It is
loaded from the key-value store once at construction and writes through on
every mutation.

Writes to the same deployment id are serialised with a per-id
``asyncio.Lock``. Records are replaced rather than mutated in place, so
concurrent readers always see the latest committed version.
"""
import asyncio
import time
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger
from prometheus_client import Counter

from .errors import (
    DeploymentNotFound,
    DuplicateDeployment,
    InvalidStatusTransition,
    PersistenceFailure,
)
from .models import (
    Deployment,
    DeploymentAnnotation,
    DeploymentComparison,
    DeploymentStatus,
    DeploymentStrategy,
    compare_deployments,
)
from .storage import KeyValueStore


DEPLOYMENTS_KEY = "cicd.deployments"
ANNOTATIONS_KEY = "cicd.annotations"
ROLLBACK_HISTORY_KEY = "cicd.rollback_history"

DEPLOYMENTS_REGISTERED = Counter(
    "deployments_registered_total",
    "Deployments registered in the ledger",
    ["environment"]
)

DEPLOYMENT_STATUS_UPDATES = Counter(
    "deployment_status_updates_total",
    "Deployment status transitions",
    ["status"]
)

# Allowed target statuses per current status
_TRANSITIONS = {
    DeploymentStatus.IN_PROGRESS: {
        DeploymentStatus.IN_PROGRESS,
        DeploymentStatus.SUCCESS,
        DeploymentStatus.FAILED,
    },
    DeploymentStatus.SUCCESS: {DeploymentStatus.SUCCESS},
    DeploymentStatus.FAILED: {DeploymentStatus.FAILED},
    DeploymentStatus.ROLLED_BACK: {DeploymentStatus.ROLLED_BACK},
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class DeploymentLedger:
    """Keyed store of deployments, annotations and rollback history."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._deployments: Dict[str, Deployment] = {}
        self._annotations: List[DeploymentAnnotation] = []
        self._rollback_history: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._annotation_lock = asyncio.Lock()
        self.load()

    def load(self) -> None:
        """Load all ledger state from the store.

        Raises:
            PersistenceFailure: If the store cannot be read or holds
                malformed records
        """
        try:
            stored = self.store.get(DEPLOYMENTS_KEY, {}) or {}
            annotations = self.store.get(ANNOTATIONS_KEY, []) or []
            history = self.store.get(ROLLBACK_HISTORY_KEY, {}) or {}

            self._deployments = {
                deployment_id: Deployment.from_dict(data)
                for deployment_id, data in stored.items()
            }
            self._annotations = [DeploymentAnnotation.from_dict(a) for a in annotations]
            self._rollback_history = dict(history)
        except Exception as e:
            logger.error(f"Failed to load deployment ledger: {e}")
            raise PersistenceFailure(f"Failed to load deployment ledger: {e}") from e

        logger.info(
            f"Ledger loaded: {len(self._deployments)} deployments, "
            f"{len(self._annotations)} annotations, "
            f"{len(self._rollback_history)} rollbacks"
        )

    # Reads

    def get(self, deployment_id: str) -> Optional[Deployment]:
        return self._deployments.get(deployment_id)

    def require(self, deployment_id: str) -> Deployment:
        """Get a deployment or raise DeploymentNotFound."""
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFound(deployment_id)
        return deployment

    def list_deployments(
        self,
        environment: Optional[str] = None,
        status: Optional[DeploymentStatus] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Deployment]:
        """List deployments, newest first."""
        deployments = list(self._deployments.values())

        if environment:
            deployments = [d for d in deployments if d.environment == environment]
        if status:
            deployments = [d for d in deployments if d.status == status]
        if since:
            deployments = [d for d in deployments if d.timestamp >= since]

        deployments.sort(key=lambda d: d.timestamp, reverse=True)

        if limit:
            deployments = deployments[:limit]
        return deployments

    def deployments_in_range(
        self,
        start: datetime,
        end: datetime,
        environment: Optional[str] = None,
    ) -> List[Deployment]:
        """Deployments within [start, end], oldest first (chart order)."""
        deployments = [
            d for d in self._deployments.values()
            if start <= d.timestamp <= end
            and (environment is None or d.environment == environment)
        ]
        return sorted(deployments, key=lambda d: d.timestamp)

    def previous_deployment(self, deployment: Deployment) -> Optional[Deployment]:
        """Most recent successful, non-rollback deployment before this one
        in the same environment; the natural rollback target."""
        candidates = [
            d for d in self._deployments.values()
            if d.id != deployment.id
            and d.environment == deployment.environment
            and d.status == DeploymentStatus.SUCCESS
            and not d.is_rollback
            and d.timestamp < deployment.timestamp
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.timestamp)

    def compare(self, deployment_id_a: str, deployment_id_b: str) -> DeploymentComparison:
        return compare_deployments(self.require(deployment_id_a), self.require(deployment_id_b))

    def annotations_between(self, start: datetime, end: datetime) -> List[DeploymentAnnotation]:
        return [a for a in self._annotations if start <= a.timestamp <= end]

    def rollback_for(self, deployment_id: str) -> Optional[str]:
        """Id of the latest rollback record for a deployment."""
        return self._rollback_history.get(deployment_id)

    def rollback_history(self) -> Dict[str, str]:
        return dict(self._rollback_history)

    # Writes

    async def register_deployment(self, **fields: Any) -> Deployment:
        """Register a new deployment, filling defaults for omitted fields.

        Args:
            **fields: Any subset of ``Deployment`` fields

        Returns:
            The stored deployment

        Raises:
            DuplicateDeployment: If the id is already tracked
            PersistenceFailure: If the store write fails
        """
        deployment_id = fields.pop("id", None) or f"deploy-{_now_ms()}-{uuid.uuid4().hex[:9]}"
        fields.setdefault("version", "unknown")
        deployment = Deployment(id=deployment_id, **fields)

        async with self._locks[deployment_id]:
            if deployment_id in self._deployments:
                raise DuplicateDeployment(f"Deployment {deployment_id} already registered")
            self._commit(deployment_id, deployment)

        DEPLOYMENTS_REGISTERED.labels(environment=deployment.environment).inc()
        logger.bind(deployment_id=deployment_id).info(
            f"📦 Registered deployment: {deployment.version} to {deployment.environment}"
        )
        return deployment

    async def update_status(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        duration: Optional[float] = None,
    ) -> Deployment:
        """Move a deployment forward in its lifecycle.

        Raises:
            DeploymentNotFound: Unknown id
            InvalidStatusTransition: If the move is not monotonic
            PersistenceFailure: If the store write fails
        """
        async with self._locks[deployment_id]:
            current = self.require(deployment_id)

            if status not in _TRANSITIONS[current.status]:
                raise InvalidStatusTransition(
                    f"Deployment {deployment_id}: {current.status.value} -> {status.value} "
                    f"is not allowed"
                )

            updated = replace(
                current,
                status=status,
                duration=duration if duration is not None else current.duration,
            )
            self._commit(deployment_id, updated)

        DEPLOYMENT_STATUS_UPDATES.labels(status=status.value).inc()

        log = logger.bind(deployment_id=deployment_id)
        if status == DeploymentStatus.FAILED:
            log.error(f"❌ Deployment {updated.version} failed in {updated.environment}")
        else:
            icon = "✅" if status == DeploymentStatus.SUCCESS else "🔄"
            log.info(f"{icon} Deployment {updated.version}: {status.value}")
        return updated

    async def record_rollback(
        self,
        original: Deployment,
        target_version: str,
        strategy: DeploymentStrategy,
        duration: Optional[float] = None,
    ) -> Deployment:
        """Create the rollback record for a deployment and index it.

        The original record is left untouched; the new record carries
        status ROLLED_BACK and points back at the original.
        """
        rollback_id = f"rollback-{_now_ms()}-{uuid.uuid4().hex[:9]}"

        record = Deployment(
            id=rollback_id,
            version=target_version,
            environment=original.environment,
            commit_sha=original.commit_sha,
            commit_message=f"Rollback of {original.version}",
            author="release-guard",
            status=DeploymentStatus.ROLLED_BACK,
            strategy=strategy,
            duration=duration,
            services=list(original.services),
            rollback_deployment_id=original.id,
        )

        async with self._locks[original.id]:
            self._commit(rollback_id, record)

            previous = self._rollback_history.get(original.id)
            self._rollback_history[original.id] = rollback_id
            try:
                self.store.set(ROLLBACK_HISTORY_KEY, self._rollback_history)
            except Exception as e:
                if previous is None:
                    self._rollback_history.pop(original.id, None)
                else:
                    self._rollback_history[original.id] = previous
                self._discard(rollback_id)
                logger.error(f"Failed to persist rollback history: {e}")
                raise PersistenceFailure(f"Failed to persist rollback history: {e}") from e

        logger.bind(deployment_id=original.id, audit=True).info(
            f"🔄 Recorded rollback {rollback_id}: {original.version} -> {target_version}"
        )
        return record

    async def add_annotation(self, annotation: DeploymentAnnotation) -> None:
        async with self._annotation_lock:
            self._annotations.append(annotation)
            try:
                self.store.set(ANNOTATIONS_KEY, [a.to_dict() for a in self._annotations])
            except Exception as e:
                self._annotations.pop()
                logger.error(f"Failed to persist annotation: {e}")
                raise PersistenceFailure(f"Failed to persist annotation: {e}") from e

    def _commit(self, deployment_id: str, deployment: Deployment) -> None:
        """Write one record through to the store, reverting on failure."""
        previous = self._deployments.get(deployment_id)
        self._deployments[deployment_id] = deployment
        try:
            self.store.set(
                DEPLOYMENTS_KEY,
                {d_id: d.to_dict() for d_id, d in self._deployments.items()},
            )
        except Exception as e:
            if previous is None:
                self._deployments.pop(deployment_id, None)
            else:
                self._deployments[deployment_id] = previous
            logger.error(f"Failed to persist deployment {deployment_id}: {e}")
            raise PersistenceFailure(f"Failed to persist deployment {deployment_id}: {e}") from e

    def _discard(self, deployment_id: str) -> None:
        """Drop a committed record again, in memory and in the store."""
        self._deployments.pop(deployment_id, None)
        try:
            self.store.set(
                DEPLOYMENTS_KEY,
                {d_id: d.to_dict() for d_id, d in self._deployments.items()},
            )
        except Exception as e:
            logger.error(f"Failed to remove deployment {deployment_id} from the store: {e}")
