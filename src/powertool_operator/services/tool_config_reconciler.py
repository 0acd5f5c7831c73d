"""Status upkeep for PowerToolConfig registry entries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.models.common import ConditionReason, ConditionType
from powertool_operator.models.k8s import Condition
from powertool_operator.models.tool_config import PowerToolConfig
from powertool_operator.services.cluster import ClusterService, get_cluster_service
from powertool_operator.services.status import utc_now

logger = logging.getLogger(__name__)

READY_PHASE = "Ready"
READY_MESSAGE = "PowerToolConfig is valid and ready for use"


@dataclass
class ToolConfigMetrics:
    """Metrics from a PowerToolConfig validation cycle."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    configs_checked: int = 0
    configs_updated: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


def mark_ready(tool_config: PowerToolConfig, now: datetime | None = None) -> None:
    """Stamp a registry entry as validated and ready, replacing any Ready condition."""
    now = now or utc_now()
    tool_config.status.phase = READY_PHASE
    tool_config.status.last_validated = now

    condition = Condition(
        type=ConditionType.READY.value,
        status="True",
        last_transition_time=now,
        reason=ConditionReason.CONFIGURATION_VALID.value,
        message=READY_MESSAGE,
    )
    for index, existing in enumerate(tool_config.status.conditions):
        if existing.type == condition.type:
            tool_config.status.conditions[index] = condition
            return
    tool_config.status.conditions.append(condition)


class ToolConfigReconciler:
    """Marks PowerToolConfig entries as validated.

    Schema validation happens at admission, so an entry that exists is
    considered valid; this keeps its status current for ``kubectl get``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cluster: ClusterService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._cluster = cluster
        self._last_run_metrics: ToolConfigMetrics | None = None

    @property
    def cluster(self) -> ClusterService:
        """Get the ClusterService, using global instance if not set."""
        if self._cluster is None:
            self._cluster = get_cluster_service()
        return self._cluster

    def reconcile(self, tool_config: PowerToolConfig) -> PowerToolConfig:
        """Validate one entry and write its status."""
        logger.info(
            "Reconciling PowerToolConfig %s/%s (tool %s)",
            tool_config.namespace,
            tool_config.name,
            tool_config.spec.name,
        )
        mark_ready(tool_config)
        return self.cluster.update_tool_config_status(tool_config)

    def run_validation_cycle(self) -> ToolConfigMetrics:
        """Reconcile every PowerToolConfig in the cluster.

        Per-entry failures are recorded in the metrics; listing failures raise.
        """
        start_time = datetime.now(UTC)
        metrics = ToolConfigMetrics(timestamp=start_time)

        tool_configs = self.cluster.list_tool_configs()
        metrics.configs_checked = len(tool_configs)

        for tool_config in tool_configs:
            try:
                self.reconcile(tool_config)
                metrics.configs_updated += 1
            except Exception as e:
                logger.error(
                    "Failed to update PowerToolConfig %s/%s: %s",
                    tool_config.namespace,
                    tool_config.name,
                    e,
                )
                metrics.errors.append(f"{tool_config.namespace}/{tool_config.name}: {e}")

        metrics.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
        self._last_run_metrics = metrics
        return metrics

    def get_last_metrics(self) -> ToolConfigMetrics | None:
        """Get metrics from the last validation cycle."""
        return self._last_run_metrics


class ToolConfigController:
    """Background controller that periodically validates PowerToolConfigs.

    Example:
        ```python
        controller = ToolConfigController()
        await controller.start()
        # ... operator runs ...
        await controller.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        reconciler: ToolConfigReconciler | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._reconciler = reconciler
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def reconciler(self) -> ToolConfigReconciler:
        """Get the reconciler instance."""
        if self._reconciler is None:
            self._reconciler = get_tool_config_reconciler()
        return self._reconciler

    @property
    def is_running(self) -> bool:
        """Check if the controller is running."""
        return self._running and self._task is not None

    async def _run_loop(self) -> None:
        """Background loop that validates entries at configured intervals."""
        interval = self.settings.tool_config_interval_seconds
        logger.info(f"PowerToolConfig controller started, running every {interval} seconds")

        while self._running:
            try:
                await asyncio.to_thread(self.reconciler.run_validation_cycle)
            except Exception as e:
                logger.error(f"Error in PowerToolConfig validation cycle: {e}")

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

        logger.info("PowerToolConfig controller stopped")

    async def start(self) -> None:
        """Start the background controller unless disabled or already running."""
        if not self.settings.tool_config_controller_enabled:
            logger.info("PowerToolConfig controller is disabled in settings")
            return

        if self._running:
            logger.warning("PowerToolConfig controller is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Stop the background controller."""
        if not self._running:
            return

        self._running = False

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


# Global instances
_tool_config_reconciler: ToolConfigReconciler | None = None
_tool_config_controller: ToolConfigController | None = None


def get_tool_config_reconciler() -> ToolConfigReconciler:
    """Get the global ToolConfigReconciler instance."""
    global _tool_config_reconciler
    if _tool_config_reconciler is None:
        _tool_config_reconciler = ToolConfigReconciler()
    return _tool_config_reconciler


def get_tool_config_controller() -> ToolConfigController:
    """Get the global ToolConfigController instance."""
    global _tool_config_controller
    if _tool_config_controller is None:
        _tool_config_controller = ToolConfigController()
    return _tool_config_controller
