"""SLO compliance checks run after a deployment.

Compliance feeds dashboards and release reports, so a metric that cannot be
read is reported as non-compliant instead of aborting the check.
"""
from typing import List, Optional, Sequence

import numpy as np
from loguru import logger

from .metrics_source import MetricsSource, TimeWindow
from .models import Deployment, SLOCompliance, SLODefinition


class SLOComplianceChecker:
    """Evaluates SLO targets against actual attainment."""

    def __init__(self, metrics_source: MetricsSource):
        self.metrics_source = metrics_source

    async def check(
        self,
        deployment: Deployment,
        slos: Sequence[SLODefinition],
    ) -> List[SLOCompliance]:
        """Check each SLO over its trailing time window.

        Returns:
            One SLOCompliance per input SLO, in input order
        """
        results = []

        for slo in slos:
            actual = await self._actual_value(slo)

            if actual is None:
                compliant = False
                budget = 0.0
            else:
                compliant = actual >= slo.target
                budget = max(0.0, actual - slo.target)

            results.append(SLOCompliance(
                deployment_id=deployment.id,
                slo_name=slo.name,
                target=slo.target,
                actual=actual,
                compliant=compliant,
                budget=budget,
                time_window=slo.time_window,
            ))

            log = logger.bind(deployment_id=deployment.id)
            if actual is None:
                log.warning(f"❌ SLO \"{slo.name}\": no data (target: {slo.target}%)")
            elif compliant:
                log.info(f"✅ SLO \"{slo.name}\": {actual:.3f}% (target: {slo.target}%)")
            else:
                log.warning(f"❌ SLO \"{slo.name}\": {actual:.3f}% (target: {slo.target}%)")

        return results

    async def _actual_value(self, slo: SLODefinition) -> Optional[float]:
        """Mean of the SLO metric over its window, or None if unavailable."""
        try:
            window = TimeWindow.trailing(slo.time_window)
            snapshots = await self.metrics_source.get_snapshots(slo.metric, window)
        except Exception as e:
            logger.warning(f"Could not read {slo.metric} for SLO {slo.name}: {e}")
            return None

        if not snapshots:
            return None
        return float(np.mean([s.value for s in snapshots]))
