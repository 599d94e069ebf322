"""
Periodic health reconciliation.

Refreshes the broadcast server state, lets the orchestrator reconcile
recorded stream status against live workers, and pushes the result into
the metrics exporter. Never restarts anything.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from monitoring.config import MonitoringConfig

logger = logging.getLogger(__name__)


class HealthReconciler:
    """Background loop tying controller, orchestrator and metrics together."""

    def __init__(
        self,
        controller,
        orchestrator,
        config: Optional[MonitoringConfig] = None,
        metrics=None,
    ):
        """Initialize reconciler.

        Args:
            controller: BroadcastServerController
            orchestrator: StreamOrchestrator
            config: Monitoring configuration (creates default if not provided)
            metrics: Optional MetricsExporter
        """
        if config is None:
            from monitoring.config import get_config

            config = get_config()

        self.controller = controller
        self.orchestrator = orchestrator
        self.config = config
        self.metrics = metrics

        self._task: Optional[asyncio.Task] = None
        self._should_run = False
        self.last_run: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[Dict[str, Any]]:
        """Run a single reconciliation pass.

        Returns:
            Stream changes made by the orchestrator
        """
        state = await self.controller.get_status()

        changes: List[Dict[str, Any]] = []
        if self.config.reconcile_streams:
            changes = await self.orchestrator.reconcile()
            for change in changes:
                logger.warning(f"Stream {change['id']} {change['change']} -> {change['status']}")

        if self.metrics is not None:
            self.metrics.update_icecast_status(state)
            self.metrics.update_stream_counts(
                record.status.value for record in self.orchestrator.registry.records()
            )

        self.last_run = {
            "icecast": state.state.value,
            "health": state.health.value,
            "changes": changes,
        }
        return changes

    async def _loop(self) -> None:
        logger.info(
            f"Health reconciler started (interval: {self.config.health_check_interval}s)"
        )
        while self._should_run:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Health reconciler cancelled")
                break
            except Exception as e:
                logger.error(f"Error in health reconciliation: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.config.health_check_interval)
            except asyncio.CancelledError:
                logger.info("Health reconciler cancelled")
                break

        logger.info("Health reconciler stopped")

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.is_running:
            return
        self._should_run = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the background loop and wait for it to finish."""
        self._should_run = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
