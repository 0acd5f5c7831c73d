"""Controller routes for PowerTool reconciliation status and manual triggers."""

import asyncio

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from powertool_operator.core.config import get_settings
from powertool_operator.services.cluster import StatusConflictError
from powertool_operator.services.controller import get_powertool_controller
from powertool_operator.services.reconciler import FATAL_ERRORS, get_reconciler
from powertool_operator.services.tool_config_reconciler import (
    get_tool_config_controller,
    get_tool_config_reconciler,
)

router = APIRouter(prefix="/api/v1/controller", tags=["Controller"])


class ControllerStatusResponse(BaseModel):
    """Response model for controller status."""

    model_config = ConfigDict(populate_by_name=True)

    running: bool
    queue_depth: int = Field(alias="queueDepth")
    delayed: int
    tool_config_controller_running: bool = Field(alias="toolConfigControllerRunning")


class ControllerMetricsResponse(BaseModel):
    """Response model for controller metrics."""

    model_config = ConfigDict(populate_by_name=True)

    started_at: str | None = Field(alias="startedAt")
    reconciles: int
    errors: int
    watch_events: int = Field(alias="watchEvents")
    watch_restarts: int = Field(alias="watchRestarts")
    resyncs: int
    last_error: str | None = Field(alias="lastError")
    last_results: dict[str, dict] = Field(alias="lastResults")
    tool_configs: dict | None = Field(alias="toolConfigs")


class ControllerConfigResponse(BaseModel):
    """Response model for controller configuration."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    workers: int
    resync_interval_seconds: int = Field(alias="resyncIntervalSeconds")
    requeue_intervals: dict[str, float] = Field(alias="requeueIntervals")
    error_backoff: dict[str, float] = Field(alias="errorBackoff")
    tool_config_namespaces: list[str] = Field(alias="toolConfigNamespaces")
    tool_config_interval_seconds: int = Field(alias="toolConfigIntervalSeconds")


class ReconcileResponse(BaseModel):
    """Response model for a manual reconcile request."""

    model_config = ConfigDict(populate_by_name=True)

    queued: bool
    phase: str | None = None
    requeue_after: float | None = Field(default=None, alias="requeueAfter")
    created: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


@router.get("/status", response_model=ControllerStatusResponse)
async def get_controller_status() -> dict:
    """Get whether the controllers are running and how much work is queued."""
    controller = get_powertool_controller()
    queue = controller.queue

    return {
        "running": controller.is_running,
        "queueDepth": len(queue) if queue is not None else 0,
        "delayed": queue.pending_delayed if queue is not None else 0,
        "toolConfigControllerRunning": get_tool_config_controller().is_running,
    }


@router.get("/metrics", response_model=ControllerMetricsResponse)
async def get_controller_metrics() -> dict:
    """Get reconcile counters and the last result per PowerTool.

    Also includes metrics from the last PowerToolConfig validation cycle, or
    null if none has run yet.
    """
    metrics = get_powertool_controller().metrics
    tool_config_metrics = get_tool_config_reconciler().get_last_metrics()

    tool_configs = None
    if tool_config_metrics is not None:
        tool_configs = {
            "timestamp": tool_config_metrics.timestamp.isoformat(),
            "configsChecked": tool_config_metrics.configs_checked,
            "configsUpdated": tool_config_metrics.configs_updated,
            "errors": tool_config_metrics.errors,
            "durationSeconds": tool_config_metrics.duration_seconds,
        }

    return {
        "startedAt": metrics.started_at.isoformat() if metrics.started_at else None,
        "reconciles": metrics.reconciles,
        "errors": metrics.errors,
        "watchEvents": metrics.watch_events,
        "watchRestarts": metrics.watch_restarts,
        "resyncs": metrics.resyncs,
        "lastError": metrics.last_error,
        "lastResults": metrics.last_results,
        "toolConfigs": tool_configs,
    }


@router.get("/config", response_model=ControllerConfigResponse)
async def get_controller_config() -> dict:
    """Get current controller configuration."""
    settings = get_settings()

    return {
        "enabled": settings.controller_enabled,
        "workers": settings.max_concurrent_reconciles,
        "resyncIntervalSeconds": settings.resync_interval_seconds,
        "requeueIntervals": {
            "running": settings.active_running_interval_seconds,
            "setupTeardown": settings.setup_teardown_interval_seconds,
            "completed": settings.completed_job_interval_seconds,
            "conflict": settings.conflict_requeue_seconds,
        },
        "errorBackoff": {
            "base": settings.error_backoff_base_seconds,
            "max": settings.error_backoff_max_seconds,
        },
        "toolConfigNamespaces": settings.tool_config_namespaces,
        "toolConfigIntervalSeconds": settings.tool_config_interval_seconds,
    }


@router.post("/reconcile/{namespace}/{name}", response_model=ReconcileResponse)
async def trigger_reconcile(namespace: str, name: str) -> dict:
    """Manually trigger reconciliation of one PowerTool.

    When the controller is running the job is queued; otherwise a pass runs
    immediately and its result is returned.

    Args:
        namespace: Namespace of the PowerTool
        name: Name of the PowerTool
    """
    controller = get_powertool_controller()
    if controller.enqueue(namespace, name):
        return {"queued": True}

    try:
        result = await asyncio.to_thread(get_reconciler().reconcile, namespace, name)
    except FATAL_ERRORS as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except StatusConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return {
        "queued": False,
        "phase": result.phase,
        "requeueAfter": result.requeue_after,
        "created": result.created,
        "failed": result.failed,
    }
