"""Staged rollback execution.

Each deployment strategy maps to an ordered plan of atomic platform stages.
The executor runs them one at a time under a per-stage timeout, reports a
progress checkpoint at every stage boundary and polls for cancellation only
between stages. A failed or cancelled run is never retried automatically;
rolling back again is a fresh invocation.

State machine::

    PENDING -> RUNNING -> SUCCEEDED
                       -> FAILED
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from loguru import logger
from prometheus_client import Counter, Gauge, Histogram

from src.release_guard.monitoring.tracing import deployment_span, record_exception
from .errors import PersistenceFailure, RollbackCancelled, StageFailure
from .ledger import DeploymentLedger
from .models import Deployment, DeploymentStrategy, RollbackStage
from .platform import DeploymentPlatform


ROLLBACKS_TOTAL = Counter(
    "rollbacks_total",
    "Rollback executions by strategy and outcome",
    ["strategy", "outcome"]
)

ROLLBACK_STAGE_SECONDS = Histogram(
    "rollback_stage_duration_seconds",
    "Duration of individual rollback stages",
    ["strategy", "stage"]
)

ROLLBACKS_IN_PROGRESS = Gauge(
    "rollbacks_in_progress",
    "Rollbacks currently executing"
)


class ExecutorState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


STANDARD_PLAN = (
    RollbackStage("fetch_target", 25, "Fetching target version...", 1.0),
    RollbackStage("deploy_previous", 50, "Deploying previous version...", 2.0),
    RollbackStage("verify", 75, "Verifying deployment...", 1.0),
)

CANARY_PLAN = (
    RollbackStage("divert_traffic", 20, "Routing traffic away from canary...", 2.0),
    RollbackStage("scale_down_canary", 40, "Scaling down canary...", 1.5),
    RollbackStage("promote_stable", 70, "Promoting stable version...", 1.5),
    RollbackStage("verify_routing", 90, "Verifying traffic routing...", 1.0),
)

BLUE_GREEN_PLAN = (
    RollbackStage("switch_load_balancer", 30, "Switching load balancer to blue...", 1.0),
    RollbackStage("drain_green", 60, "Draining green environment...", 1.5),
    RollbackStage("verify_blue", 90, "Verifying blue environment...", 0.5),
)

ROLLING_CEILING = 90
ROLLING_STAGE_SECONDS = 1.0


def rolling_plan(instance_count: int) -> List[RollbackStage]:
    """One stage per instance, checkpoints evenly spaced up to 90%."""
    if instance_count < 1:
        raise ValueError("Rolling rollback needs at least one instance")
    return [
        RollbackStage(
            name=f"rollback_instance_{k}",
            percent=k * ROLLING_CEILING // instance_count,
            message=f"Rolling back instance {k}/{instance_count}...",
            simulated_seconds=ROLLING_STAGE_SECONDS,
            instance=k,
        )
        for k in range(1, instance_count + 1)
    ]


def plan_stages(strategy: DeploymentStrategy, instance_count: int = 5) -> List[RollbackStage]:
    """Ordered stage plan for a strategy."""
    if strategy == DeploymentStrategy.CANARY:
        return list(CANARY_PLAN)
    if strategy == DeploymentStrategy.BLUE_GREEN:
        return list(BLUE_GREEN_PLAN)
    if strategy == DeploymentStrategy.ROLLING:
        return rolling_plan(instance_count)
    return list(STANDARD_PLAN)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress checkpoint emitted at a stage boundary."""
    stage: str
    percent: int
    message: str


class ProgressReporter(ABC):
    """Receives progress and answers cancellation polls."""

    @abstractmethod
    def report(self, percent: int, message: str) -> None:
        pass

    def is_cancelled(self) -> bool:
        return False


class LoggingProgressReporter(ProgressReporter):
    """Writes progress to the log; cancellable through ``cancel()``."""

    def __init__(self, deployment_id: str = ""):
        self.deployment_id = deployment_id
        self._cancelled = False

    def report(self, percent: int, message: str) -> None:
        logger.bind(deployment_id=self.deployment_id).info(f"[{percent:3d}%] {message}")

    def cancel(self) -> None:
        self._cancelled = True

    def is_cancelled(self) -> bool:
        return self._cancelled


@dataclass
class RollbackResult:
    """Outcome of one rollback invocation."""
    success: bool
    message: str
    state: ExecutorState
    new_deployment_id: Optional[str] = None
    stages_completed: int = 0
    failed_stage: Optional[str] = None
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "state": self.state.value,
            "new_deployment_id": self.new_deployment_id,
            "stages_completed": self.stages_completed,
            "failed_stage": self.failed_stage,
            "cancelled": self.cancelled,
        }


class RollbackExecutor:
    """Runs strategy-specific rollback plans against a platform."""

    def __init__(
        self,
        ledger: DeploymentLedger,
        platform: DeploymentPlatform,
        stage_timeout: float = 300.0,
        rolling_instances: int = 5,
    ):
        """Initialize rollback executor.

        Args:
            ledger: Ledger recording successful rollbacks
            platform: Platform performing the stage actions
            stage_timeout: Seconds before a stage counts as failed
            rolling_instances: Instance count for rolling plans
        """
        self.ledger = ledger
        self.platform = platform
        self.stage_timeout = stage_timeout
        self.rolling_instances = rolling_instances

    def plan(self, strategy: DeploymentStrategy) -> List[RollbackStage]:
        return plan_stages(strategy, self.rolling_instances)

    async def iter_stages(
        self,
        deployment: Deployment,
        target_version: str,
        strategy: DeploymentStrategy,
        reporter: Optional[ProgressReporter] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Run a rollback plan, yielding a checkpoint before each stage.

        Cancellation is checked before each stage starts; a stage that has
        started always runs to completion or timeout.

        Raises:
            RollbackCancelled: If the reporter asks to cancel between stages
            StageFailure: If a stage fails or exceeds the stage timeout
        """
        yield ProgressEvent("prepare", 0, "Preparing rollback...")

        for stage in self.plan(strategy):
            if reporter is not None and reporter.is_cancelled():
                raise RollbackCancelled(stage.name)

            yield ProgressEvent(stage.name, stage.percent, stage.message)
            await self._run_stage(stage, deployment, target_version, strategy)

        yield ProgressEvent("complete", 100, "Rollback complete")

    async def _run_stage(
        self,
        stage: RollbackStage,
        deployment: Deployment,
        target_version: str,
        strategy: DeploymentStrategy,
    ) -> None:
        start = time.monotonic()
        try:
            await asyncio.wait_for(
                self.platform.run_stage(stage, deployment, target_version),
                timeout=self.stage_timeout,
            )
        except asyncio.TimeoutError as e:
            raise StageFailure(stage.name, f"timed out after {self.stage_timeout}s", e) from e
        except StageFailure:
            raise
        except Exception as e:
            raise StageFailure(stage.name, str(e), e) from e
        finally:
            ROLLBACK_STAGE_SECONDS.labels(
                strategy=strategy.value, stage=stage.name
            ).observe(time.monotonic() - start)

    async def execute(
        self,
        deployment: Deployment,
        target_version: str,
        strategy: DeploymentStrategy = DeploymentStrategy.STANDARD,
        reporter: Optional[ProgressReporter] = None,
    ) -> RollbackResult:
        """Roll a deployment back to a target version.

        Args:
            deployment: Deployment being reverted
            target_version: Version to restore
            strategy: Strategy selecting the stage plan
            reporter: Progress sink and cancellation source

        Returns:
            RollbackResult; ``success`` is False on stage failure or
            cancellation

        Raises:
            PersistenceFailure: If the stages succeeded but the ledger could
                not record the rollback; treat as not confirmed
        """
        reporter = reporter or LoggingProgressReporter(deployment.id)
        log = logger.bind(deployment_id=deployment.id, audit=True)
        state = ExecutorState.RUNNING
        stages_completed = 0
        started = time.monotonic()

        log.info(f"🔄 Executing {strategy.value} rollback from {deployment.version} to {target_version}...")

        with deployment_span(
            "rollback.execute",
            deployment,
            strategy=strategy.value,
            target_version=target_version,
        ) as span:
            ROLLBACKS_IN_PROGRESS.inc()
            try:
                async for event in self.iter_stages(deployment, target_version, strategy, reporter):
                    reporter.report(event.percent, event.message)
                    if event.stage not in ("prepare", "complete"):
                        stages_completed += 1

                duration_ms = (time.monotonic() - started) * 1000
                record = await self.ledger.record_rollback(
                    deployment, target_version, strategy, duration_ms
                )

            except RollbackCancelled as e:
                state = ExecutorState.FAILED
                ROLLBACKS_TOTAL.labels(strategy=strategy.value, outcome="cancelled").inc()
                log.warning(f"⚠️  Rollback cancelled before {e.stage}")
                return RollbackResult(
                    success=False,
                    message=f"Rollback cancelled before stage '{e.stage}'",
                    state=state,
                    stages_completed=stages_completed,
                    failed_stage=e.stage,
                    cancelled=True,
                )

            except StageFailure as e:
                state = ExecutorState.FAILED
                ROLLBACKS_TOTAL.labels(strategy=strategy.value, outcome="failed").inc()
                record_exception(span, e)
                log.error(f"❌ Rollback failed: {e}")
                return RollbackResult(
                    success=False,
                    message=f"Rollback failed: {e}",
                    state=state,
                    stages_completed=max(stages_completed - 1, 0),
                    failed_stage=e.stage,
                )

            except PersistenceFailure as e:
                state = ExecutorState.FAILED
                ROLLBACKS_TOTAL.labels(strategy=strategy.value, outcome="unconfirmed").inc()
                record_exception(span, e)
                log.error(f"❌ Rollback executed but not recorded: {e}")
                raise

            finally:
                ROLLBACKS_IN_PROGRESS.dec()

        state = ExecutorState.SUCCEEDED
        ROLLBACKS_TOTAL.labels(strategy=strategy.value, outcome="succeeded").inc()
        log.info(f"✅ Successfully rolled back to {target_version} ({record.id})")

        return RollbackResult(
            success=True,
            message=f"Rolled back from {deployment.version} to {target_version}",
            state=state,
            new_deployment_id=record.id,
            stages_completed=stages_completed,
        )
