"""Status projection and requeue scheduling for PowerTool jobs."""

from __future__ import annotations

from datetime import UTC, datetime

from powertool_operator.core.config import Settings
from powertool_operator.models.common import ConditionReason, ConditionType, PowerToolPhase
from powertool_operator.models.k8s import Condition
from powertool_operator.models.powertool import PowerToolStatus


def utc_now() -> datetime:
    """Current time at the one-second precision Kubernetes stores."""
    return datetime.now(UTC).replace(microsecond=0)


def set_condition(
    status: PowerToolStatus,
    condition_type: ConditionType | str,
    condition_status: str,
    reason: ConditionReason | str,
    message: str,
    now: datetime | None = None,
) -> Condition:
    """Set or update a condition, keeping at most one per type.

    ``lastTransitionTime`` only moves when the condition's status changes;
    reason and message are always refreshed.
    """
    now = now or utc_now()
    type_value = getattr(condition_type, "value", condition_type)
    reason_value = getattr(reason, "value", reason)

    existing = status.get_condition(type_value)
    if existing is not None:
        if existing.status != condition_status:
            existing.status = condition_status
            existing.last_transition_time = now
        existing.reason = reason_value
        existing.message = message
        return existing

    condition = Condition(
        type=type_value,
        status=condition_status,
        last_transition_time=now,
        reason=reason_value,
        message=message,
    )
    status.conditions.append(condition)
    return condition


def initialize_status(status: PowerToolStatus, now: datetime | None = None) -> None:
    """First-pass status: Pending, start time stamped, not yet ready."""
    now = now or utc_now()
    status.phase = PowerToolPhase.PENDING
    status.started_at = now
    set_condition(
        status,
        ConditionType.READY,
        "False",
        ConditionReason.TARGETS_SELECTED,
        "Initializing PowerTool",
        now=now,
    )


def mark_failed(status: PowerToolStatus, message: str, now: datetime | None = None) -> None:
    """Record a fatal reconciliation error without forcing a phase."""
    set_condition(
        status, ConditionType.FAILED, "True", ConditionReason.FAILED, message, now=now
    )
    status.last_error = message


def mark_conflicted(status: PowerToolStatus, reason: str, now: datetime | None = None) -> None:
    """Record that a target pod is owned by another job."""
    status.phase = PowerToolPhase.CONFLICTED
    set_condition(
        status,
        ConditionType.CONFLICTED,
        "True",
        ConditionReason.CONFLICT_DETECTED,
        reason,
        now=now,
    )


def project_progress(
    status: PowerToolStatus,
    selected_pods: int,
    active_pods: dict[str, str],
    now: datetime | None = None,
) -> None:
    """Fold the pass's pod accounting into counts, phase and conditions.

    With active containers the job is Running; with none left over a
    non-empty selection it is Completed. With nothing selected the phase is
    left as it was.
    """
    now = now or utc_now()
    status.selected_pods = selected_pods
    status.active_pods = active_pods
    status.completed_pods = max(selected_pods - len(active_pods), 0)

    if active_pods:
        status.phase = PowerToolPhase.RUNNING
        status.finished_at = None
        set_condition(
            status,
            ConditionType.RUNNING,
            "True",
            ConditionReason.RUNNING,
            f"Running on {len(active_pods)} pods",
            now=now,
        )
        conflicted = status.get_condition(ConditionType.CONFLICTED.value)
        if conflicted is not None and conflicted.status == "True":
            set_condition(
                status,
                ConditionType.CONFLICTED,
                "False",
                ConditionReason.CONFLICT_RESOLVED,
                "No target pods are claimed by another PowerTool",
                now=now,
            )
    elif selected_pods > 0:
        status.phase = PowerToolPhase.COMPLETED
        if status.finished_at is None:
            status.finished_at = now
        if status.get_condition(ConditionType.RUNNING.value) is not None:
            set_condition(
                status,
                ConditionType.RUNNING,
                "False",
                ConditionReason.COMPLETED,
                "No active containers",
                now=now,
            )
        set_condition(
            status,
            ConditionType.COMPLETED,
            "True",
            ConditionReason.COMPLETED,
            "All containers completed",
            now=now,
        )


def requeue_interval(phase: PowerToolPhase | None, settings: Settings) -> float:
    """Seconds until the next poll of a job in the given phase.

    Active jobs are polled quickly, finished jobs rarely, and everything in
    between (unset, Pending, Conflicted) at the setup/teardown pace.
    """
    if phase == PowerToolPhase.RUNNING:
        return settings.active_running_interval_seconds
    if phase in (PowerToolPhase.COMPLETED, PowerToolPhase.FAILED):
        return settings.completed_job_interval_seconds
    return settings.setup_teardown_interval_seconds
