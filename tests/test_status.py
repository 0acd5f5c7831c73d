"""Tests for status projection and requeue scheduling."""

from datetime import UTC, datetime, timedelta

from powertool_operator.core.config import Settings
from powertool_operator.models.common import ConditionType, PowerToolPhase
from powertool_operator.models.powertool import PowerToolStatus
from powertool_operator.services.status import (
    initialize_status,
    mark_conflicted,
    mark_failed,
    project_progress,
    requeue_interval,
    set_condition,
)

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
T1 = T0 + timedelta(minutes=1)
T2 = T0 + timedelta(minutes=2)


class TestSetCondition:
    """Tests for condition upserts."""

    def test_adds_condition(self):
        status = PowerToolStatus()

        set_condition(status, ConditionType.RUNNING, "True", "Running", "Running on 1 pods", T0)

        assert len(status.conditions) == 1
        assert status.conditions[0].last_transition_time == T0

    def test_one_condition_per_type(self):
        status = PowerToolStatus()
        set_condition(status, ConditionType.RUNNING, "True", "Running", "Running on 1 pods", T0)
        set_condition(status, ConditionType.RUNNING, "True", "Running", "Running on 2 pods", T1)

        assert len(status.conditions) == 1
        condition = status.get_condition("Running")
        assert condition.message == "Running on 2 pods"
        assert condition.last_transition_time == T0

    def test_transition_time_moves_on_status_change(self):
        status = PowerToolStatus()
        set_condition(status, ConditionType.RUNNING, "True", "Running", "", T0)
        set_condition(status, ConditionType.RUNNING, "False", "Completed", "", T1)

        assert status.get_condition("Running").last_transition_time == T1


class TestStatusTransitions:
    """Tests for the helpers that move a job between phases."""

    def test_initialize(self):
        status = PowerToolStatus()

        initialize_status(status, T0)

        assert status.phase == PowerToolPhase.PENDING
        assert status.started_at == T0
        assert status.get_condition("Ready").status == "False"

    def test_mark_failed_keeps_phase(self):
        status = PowerToolStatus(phase=PowerToolPhase.RUNNING)

        mark_failed(status, "Tool configuration error: boom", T0)

        assert status.phase == PowerToolPhase.RUNNING
        assert status.last_error == "Tool configuration error: boom"
        assert status.get_condition("Failed").reason == "Failed"

    def test_mark_conflicted(self):
        status = PowerToolStatus(phase=PowerToolPhase.PENDING)

        mark_conflicted(status, "Pod shared is already being profiled by PowerTool j1", T0)

        assert status.phase == PowerToolPhase.CONFLICTED
        assert status.get_condition("Conflicted").reason == "ConflictDetected"


class TestProjectProgress:
    """Tests for folding pod accounting into the status."""

    def test_running(self):
        status = PowerToolStatus(phase=PowerToolPhase.PENDING)

        project_progress(status, 3, {"a": "c", "b": "c"}, T0)

        assert status.phase == PowerToolPhase.RUNNING
        assert status.completed_pods == 1
        assert status.get_condition("Running").message == "Running on 2 pods"

    def test_completed_stamps_finished_at_once(self):
        status = PowerToolStatus(phase=PowerToolPhase.RUNNING)
        project_progress(status, 1, {"a": "c"}, T0)

        project_progress(status, 1, {}, T1)
        project_progress(status, 1, {}, T2)

        assert status.phase == PowerToolPhase.COMPLETED
        assert status.finished_at == T1
        assert status.get_condition("Running").status == "False"
        assert status.get_condition("Completed").message == "All containers completed"

    def test_rerun_clears_finished_at(self):
        status = PowerToolStatus(phase=PowerToolPhase.COMPLETED, finished_at=T0)

        project_progress(status, 1, {"a": "c"}, T1)

        assert status.phase == PowerToolPhase.RUNNING
        assert status.finished_at is None

    def test_running_resolves_conflict_condition(self):
        status = PowerToolStatus(phase=PowerToolPhase.PENDING)
        mark_conflicted(status, "Pod a is already being profiled by PowerTool other", T0)

        project_progress(status, 1, {"a": "c"}, T1)

        conflicted = status.get_condition(ConditionType.CONFLICTED.value)
        assert status.phase == PowerToolPhase.RUNNING
        assert conflicted.status == "False"
        assert conflicted.reason == "ConflictResolved"
        assert conflicted.last_transition_time == T1
        assert status.get_condition("Running").status == "True"

    def test_running_without_prior_conflict_adds_no_condition(self):
        status = PowerToolStatus(phase=PowerToolPhase.PENDING)

        project_progress(status, 1, {"a": "c"}, T0)

        assert status.get_condition(ConditionType.CONFLICTED.value) is None

    def test_nothing_selected_leaves_phase(self):
        status = PowerToolStatus(phase=PowerToolPhase.PENDING)

        project_progress(status, 0, {}, T0)

        assert status.phase == PowerToolPhase.PENDING
        assert status.selected_pods == 0
        assert status.completed_pods == 0
        assert status.conditions == []


class TestRequeueInterval:
    """Tests for phase-based requeue delays."""

    def test_intervals(self):
        settings = Settings(otel_enabled=False)

        assert requeue_interval(PowerToolPhase.RUNNING, settings) == 5.0
        assert requeue_interval(PowerToolPhase.COMPLETED, settings) == 300.0
        assert requeue_interval(PowerToolPhase.FAILED, settings) == 300.0
        assert requeue_interval(PowerToolPhase.PENDING, settings) == 15.0
        assert requeue_interval(PowerToolPhase.CONFLICTED, settings) == 15.0
        assert requeue_interval(None, settings) == 15.0
