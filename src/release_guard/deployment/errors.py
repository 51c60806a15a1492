"""Error kinds raised by the deployment ledger and rollback executor."""
from typing import Optional


class ReleaseGuardError(Exception):
    """Base class for all engine errors."""


class DeploymentNotFound(ReleaseGuardError, KeyError):
    """Unknown deployment id referenced by a ledger operation."""

    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        super().__init__(f"Deployment {deployment_id} not found")

    def __str__(self) -> str:
        return f"Deployment {self.deployment_id} not found"


class DuplicateDeployment(ReleaseGuardError, ValueError):
    """A deployment with the same id is already tracked."""


class InvalidStatusTransition(ReleaseGuardError, ValueError):
    """Status update that would move a deployment backwards."""


class PersistenceFailure(ReleaseGuardError):
    """Ledger read or write against the storage collaborator failed."""


class StageFailure(ReleaseGuardError):
    """A rollback stage failed or timed out on the deployment platform."""

    def __init__(self, stage: str, reason: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.reason = reason
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {reason}")


class RollbackCancelled(StageFailure):
    """Cancellation was requested between two rollback stages."""

    def __init__(self, stage: str):
        super().__init__(stage, "rollback cancelled before stage started")
