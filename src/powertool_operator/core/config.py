"""Operator configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="POWERTOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "PowerTool Operator"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Server
    host: str = "0.0.0.0"
    port: int = 8081

    # OpenTelemetry
    otel_enabled: bool = True
    otel_service_name: str = "powertool-operator"
    otel_exporter_endpoint: str = "http://localhost:4317"

    # Custom resources
    api_group: str = "codriverlabs.ai.toe.run"
    api_version: str = "v1alpha1"
    powertool_plural: str = "powertools"
    tool_config_plural: str = "powertoolconfigs"
    finalizer_name: str = "toe.run/finalizer"

    # Tool registry: <tool>-config is searched here first, then in the job's namespace
    system_namespace: str = "toe-system"
    tool_config_namespaces: list[str] = ["toe-system"]

    # Requeue intervals
    active_running_interval_seconds: float = 5.0
    setup_teardown_interval_seconds: float = 15.0
    completed_job_interval_seconds: float = 300.0
    conflict_requeue_seconds: float = 60.0

    # Collector tokens
    collector_service_account: str = "toe-collector"
    collector_audience: str = "toe-sdk-collector"
    token_buffer_seconds: int = 60
    token_min_duration_seconds: int = 600  # TokenRequest minimum (10 minutes)

    # PowerTool controller
    controller_enabled: bool = True
    max_concurrent_reconciles: int = 4
    resync_interval_seconds: int = 300
    watch_timeout_seconds: int = 300
    error_backoff_base_seconds: float = 5.0
    error_backoff_max_seconds: float = 300.0

    # PowerToolConfig controller
    tool_config_controller_enabled: bool = True
    tool_config_interval_seconds: int = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
