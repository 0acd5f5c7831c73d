"""Tests for PowerToolConfig status upkeep."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from powertool_operator.core.config import Settings
from powertool_operator.models.k8s import Condition
from powertool_operator.services.tool_config_reconciler import (
    READY_MESSAGE,
    ToolConfigController,
    ToolConfigReconciler,
    mark_ready,
)


class TestMarkReady:
    """Tests for marking a registry entry as ready."""

    def test_sets_phase_and_condition(self, make_tool_config):
        tool_config = make_tool_config()
        now = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)

        mark_ready(tool_config, now)

        assert tool_config.status.phase == "Ready"
        assert tool_config.status.last_validated == now
        [condition] = tool_config.status.conditions
        assert condition.type == "Ready"
        assert condition.status == "True"
        assert condition.reason == "ConfigurationValid"
        assert condition.message == READY_MESSAGE

    def test_replaces_existing_ready_condition(self, make_tool_config):
        tool_config = make_tool_config()
        old = datetime(2026, 1, 1, tzinfo=UTC)
        tool_config.status.conditions = [
            Condition(type="Ready", status="False", last_transition_time=old, reason="Invalid"),
            Condition(type="Other", status="True", last_transition_time=old),
        ]

        mark_ready(tool_config)

        assert [c.type for c in tool_config.status.conditions] == ["Ready", "Other"]
        assert tool_config.status.conditions[0].status == "True"


class TestToolConfigReconciler:
    """Tests for the validation cycle."""

    def test_cycle_marks_every_entry(self, settings: Settings, cluster, make_tool_config):
        cluster.add_tool_config(make_tool_config(tool="aperf"))
        cluster.add_tool_config(make_tool_config(tool="pyspy", namespace="shop"))
        reconciler = ToolConfigReconciler(settings=settings, cluster=cluster)

        metrics = reconciler.run_validation_cycle()

        assert metrics.configs_checked == 2
        assert metrics.configs_updated == 2
        assert metrics.errors == []
        assert all(c.status.phase == "Ready" for c in cluster.tool_configs.values())
        assert reconciler.get_last_metrics() is metrics

    def test_per_entry_errors_are_counted(self, settings: Settings, make_tool_config):
        cluster = MagicMock()
        cluster.list_tool_configs.return_value = [
            make_tool_config(tool="aperf"),
            make_tool_config(tool="pyspy"),
        ]
        cluster.update_tool_config_status.side_effect = [RuntimeError("boom"), None]
        reconciler = ToolConfigReconciler(settings=settings, cluster=cluster)

        metrics = reconciler.run_validation_cycle()

        assert metrics.configs_checked == 2
        assert metrics.configs_updated == 1
        assert metrics.errors == ["toe-system/aperf-config: boom"]

    def test_no_metrics_before_first_cycle(self, settings: Settings, cluster):
        assert ToolConfigReconciler(settings=settings, cluster=cluster).get_last_metrics() is None


class TestToolConfigController:
    """Tests for the periodic controller."""

    @pytest.mark.asyncio
    async def test_start_runs_cycle_and_stop(self, settings: Settings, cluster, make_tool_config):
        cluster.add_tool_config(make_tool_config())
        reconciler = ToolConfigReconciler(settings=settings, cluster=cluster)
        controller = ToolConfigController(settings=settings, reconciler=reconciler)

        await controller.start()
        try:
            assert controller.is_running
            for _ in range(200):
                if reconciler.get_last_metrics() is not None:
                    break
                await asyncio.sleep(0.01)
        finally:
            await controller.stop()

        assert not controller.is_running
        assert reconciler.get_last_metrics().configs_updated == 1

    @pytest.mark.asyncio
    async def test_disabled(self, cluster):
        settings = Settings(otel_enabled=False, tool_config_controller_enabled=False)
        controller = ToolConfigController(
            settings=settings, reconciler=ToolConfigReconciler(settings=settings, cluster=cluster)
        )

        await controller.start()

        assert not controller.is_running
