"""Service container wiring the control plane together.

Built once per application by the lifespan handler and stored on
``app.state.services``; routes reach it through the dependency functions.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry

from control_api.config import ApiSettings
from icecast_manager.controller import BroadcastServerController
from monitoring.config import MonitoringConfig
from monitoring.metrics import MetricsExporter
from monitoring.reconciler import HealthReconciler
from shared.os_adapter import get_os_adapter
from stream_manager.orchestrator import StreamOrchestrator
from stream_manager.registry import StreamRegistry

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes need, constructed explicitly."""

    settings: ApiSettings
    controller: BroadcastServerController
    orchestrator: StreamOrchestrator
    metrics: Optional[MetricsExporter] = None
    reconciler: Optional[HealthReconciler] = None

    async def startup(self) -> None:
        """Reconcile once (adopting surviving workers), then start the loop."""
        if self.reconciler is None:
            return
        try:
            await self.reconciler.run_once()
        except Exception as e:
            logger.error(f"Initial reconciliation failed: {e}", exc_info=True)
        self.reconciler.start()

    async def close(self) -> None:
        """Stop the reconciler, then the orchestrator."""
        if self.reconciler is not None:
            await self.reconciler.stop()
        await self.orchestrator.shutdown()


def build_services(
    settings: Optional[ApiSettings] = None,
    monitoring_config: Optional[MonitoringConfig] = None,
) -> ServiceContainer:
    """
    Construct the production service graph from environment configuration.

    Args:
        settings: API settings (read from the environment if not provided)
        monitoring_config: Monitoring configuration (read from the environment if not provided)

    Returns:
        ServiceContainer
    """
    from control_api.config import get_settings
    from monitoring.config import get_config
    from stream_manager.config import get_settings as get_stream_settings

    settings = settings or get_settings()
    monitoring_config = monitoring_config or get_config()
    stream_settings = get_stream_settings()

    os_adapter = get_os_adapter()
    controller = BroadcastServerController(os_adapter=os_adapter)
    registry = StreamRegistry(stream_settings.registry_path)

    metrics = None
    if monitoring_config.metrics_enabled:
        metrics = MetricsExporter(registry=CollectorRegistry())

    orchestrator = StreamOrchestrator(
        controller,
        registry=registry,
        config=stream_settings,
        os_adapter=os_adapter,
        metrics=metrics,
    )
    reconciler = HealthReconciler(controller, orchestrator, monitoring_config, metrics)

    logger.info(
        f"Services built (registry: {stream_settings.registry_path}, "
        f"metrics: {'on' if metrics else 'off'})"
    )
    return ServiceContainer(
        settings=settings,
        controller=controller,
        orchestrator=orchestrator,
        metrics=metrics,
        reconciler=reconciler,
    )
