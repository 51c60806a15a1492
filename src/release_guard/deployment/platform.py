"""Deployment platform collaborators executing rollback stages."""
import asyncio
import shlex
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from loguru import logger

from .errors import StageFailure
from .models import Deployment, RollbackStage


class DeploymentPlatform(ABC):
    """Infrastructure the rollback executor acts on."""

    @abstractmethod
    async def run_stage(self, stage: RollbackStage, deployment: Deployment, target_version: str) -> None:
        """Perform one rollback stage; raise to signal failure."""
        pass

    @abstractmethod
    async def probe_health(self, deployment: Deployment) -> Tuple[int, int]:
        """Return (healthy_instances, total_instances) for a deployment."""
        pass


class SimulatedPlatform(DeploymentPlatform):
    """Simulation mode: performs no infrastructure calls.

    Each stage only sleeps for its modelled latency multiplied by
    ``delay_scale``; health probes report a fixed instance count. Never use
    this to drive production decisions.
    """

    def __init__(self, delay_scale: float = 1.0, healthy_instances: int = 10, total_instances: int = 10):
        self.delay_scale = delay_scale
        self.healthy_instances = healthy_instances
        self.total_instances = total_instances

    async def run_stage(self, stage: RollbackStage, deployment: Deployment, target_version: str) -> None:
        logger.debug(f"[simulated] {stage.name} for {deployment.id} -> {target_version}")
        await asyncio.sleep(stage.simulated_seconds * self.delay_scale)

    async def probe_health(self, deployment: Deployment) -> Tuple[int, int]:
        return self.healthy_instances, self.total_instances


class CommandPlatform(DeploymentPlatform):
    """Runs one external command (``kubectl``, ``helm`` ...) per stage.

    Commands are templates formatted with ``deployment_id``, ``version``,
    ``target_version``, ``environment`` and ``instance``. Rolling instance
    stages share the ``rollback_instance`` template. Stages without a
    command are skipped.

    Example:
        >>> CommandPlatform({
        ...     "deploy_previous": "helm rollback {environment}-app",
        ...     "rollback_instance": "kubectl rollout undo statefulset/app-{instance}",
        ... })
    """

    def __init__(self, stage_commands: Dict[str, str], health_command: Optional[str] = None):
        self.stage_commands = dict(stage_commands)
        self.health_command = health_command

    def _command_for(self, stage: RollbackStage) -> Optional[str]:
        if stage.instance is not None:
            return self.stage_commands.get(stage.name, self.stage_commands.get("rollback_instance"))
        return self.stage_commands.get(stage.name)

    async def run_stage(self, stage: RollbackStage, deployment: Deployment, target_version: str) -> None:
        template = self._command_for(stage)
        if template is None:
            logger.debug(f"No command configured for stage {stage.name}, skipping")
            return

        command = template.format(
            deployment_id=deployment.id,
            version=deployment.version,
            target_version=target_version,
            environment=deployment.environment,
            instance=stage.instance or 0,
        )
        returncode, stdout, stderr = await self._run(command)
        if returncode != 0:
            raise StageFailure(stage.name, f"command exited with {returncode}: {stderr.strip()}")

    async def probe_health(self, deployment: Deployment) -> Tuple[int, int]:
        """Run the health command, which must print ``healthy/total``."""
        if not self.health_command:
            raise RuntimeError("No health command configured")

        command = self.health_command.format(
            deployment_id=deployment.id,
            version=deployment.version,
            environment=deployment.environment,
        )
        returncode, stdout, stderr = await self._run(command)
        if returncode != 0:
            raise RuntimeError(f"Health command failed: {stderr.strip()}")

        healthy, total = stdout.strip().split("/")
        return int(healthy), int(total)

    async def _run(self, command: str) -> Tuple[int, str, str]:
        args: List[str] = shlex.split(command)
        logger.info(f"Running: {command}")
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Stage timeout: do not leave the command running
            process.kill()
            await process.wait()
            raise
        return process.returncode, stdout.decode(), stderr.decode()
