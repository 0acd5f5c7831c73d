"""Core modules for configuration and telemetry."""

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.core.telemetry import get_tracer, reconcile_span, setup_telemetry

__all__ = ["Settings", "get_settings", "get_tracer", "reconcile_span", "setup_telemetry"]
