"""Common enums and types used across models."""

from enum import Enum


class PowerToolPhase(str, Enum):
    """Coarse lifecycle phase of a PowerTool job.

    State machine transitions:
        (unset) -> PENDING (first reconciliation)
        PENDING -> RUNNING (diagnostic containers active)
        PENDING/RUNNING -> CONFLICTED (target pod owned by another job)
        CONFLICTED -> RUNNING (other job finished)
        RUNNING -> COMPLETED (all containers terminated)
    """

    PENDING = "Pending"
    RUNNING = "Running"
    CONFLICTED = "Conflicted"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the phase ends the job's active lifecycle."""
        return self in {PowerToolPhase.COMPLETED, PowerToolPhase.FAILED}


class OutputMode(str, Enum):
    """Where a diagnostic container writes its results."""

    EPHEMERAL = "ephemeral"
    PVC = "pvc"
    COLLECTOR = "collector"


class ConditionType(str, Enum):
    """Condition types reported on a PowerTool."""

    READY = "Ready"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CONFLICTED = "Conflicted"


class ConditionReason(str, Enum):
    """Machine-readable reasons attached to PowerTool conditions."""

    CONFLICT_DETECTED = "ConflictDetected"
    CONFLICT_RESOLVED = "ConflictResolved"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TARGETS_SELECTED = "TargetsSelected"
    CONFIGURATION_VALID = "ConfigurationValid"
