"""Health check endpoints for Kubernetes probes and monitoring."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from powertool_operator import __version__
from powertool_operator.core.config import Settings, get_settings
from powertool_operator.services.cluster import get_cluster_service
from powertool_operator.services.controller import get_powertool_controller
from powertool_operator.services.tool_config_reconciler import get_tool_config_controller

SettingsDep = Annotated[Settings, Depends(get_settings)]

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


def _controller_check(enabled: bool, running: bool) -> dict[str, str]:
    if not enabled:
        return {"status": "ok", "state": "disabled"}
    return {"status": "ok" if running else "error", "state": "running" if running else "stopped"}


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Basic health check for liveness probe.

    Returns minimal information to confirm the operator process is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: SettingsDep) -> ReadinessResponse:
    """Readiness check for Kubernetes readiness probe.

    Reports whether the cluster client is configured and the controllers
    are running. No API calls are made.
    """
    checks: dict[str, Any] = {}

    cluster = get_cluster_service()
    checks["kubernetes"] = {
        "status": "ok" if cluster.is_initialized else "error",
        "apiGroup": f"{settings.api_group}/{settings.api_version}",
    }

    checks["powertool_controller"] = _controller_check(
        settings.controller_enabled, get_powertool_controller().is_running
    )
    checks["powertoolconfig_controller"] = _controller_check(
        settings.tool_config_controller_enabled, get_tool_config_controller().is_running
    )

    # Overall status
    all_ok = all(
        check.get("status") == "ok" for check in checks.values() if isinstance(check, dict)
    )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe.

    Simple endpoint that returns once the application has started.
    """
    return {"status": "started"}
