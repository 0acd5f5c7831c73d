"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from powertool_operator import __version__
from powertool_operator.core.config import get_settings
from powertool_operator.core.telemetry import setup_telemetry
from powertool_operator.routes import controller_router, health_router
from powertool_operator.services.controller import get_powertool_controller
from powertool_operator.services.tool_config_reconciler import get_tool_config_controller

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    powertool_controller = get_powertool_controller()
    tool_config_controller = get_tool_config_controller()

    # Startup
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    logger.info(f"Watching {settings.api_group}/{settings.api_version} {settings.powertool_plural}")

    # Start background controllers
    await tool_config_controller.start()
    await powertool_controller.start()

    yield

    # Shutdown
    logger.info("Shutting down...")

    # Stop background controllers
    await powertool_controller.stop()
    await tool_config_controller.stop()

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="PowerTool operator - attach profiling tools to running pods",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Setup OpenTelemetry
    setup_telemetry(app, settings)

    # Include routers
    app.include_router(health_router)
    app.include_router(controller_router)

    return app

# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "powertool_operator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
