"""Detection of pods already claimed by another active PowerTool."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from powertool_operator.models.powertool import PowerTool

if TYPE_CHECKING:
    from kubernetes.client import V1Pod


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of a conflict check."""

    conflicted: bool
    reason: str = ""
    conflicting_job: str | None = None
    pod_name: str | None = None


NO_CONFLICT = ConflictResult(conflicted=False)


def check_for_conflicts(
    job: PowerTool, target_pods: Iterable[V1Pod], jobs: Iterable[PowerTool]
) -> ConflictResult:
    """Find the first target pod already claimed by another non-terminal job.

    A pod is claimed by a job when it is a key of that job's ``activePods``.
    Only jobs in the same namespace count, and completed or failed jobs
    release their claims. The job being reconciled is checked whatever its
    own phase, since a finished job can still match new pods; the caller
    decides whether a conflict changes that job's phase. The check is
    advisory: two jobs that both read before either writes can both see no
    conflict.

    Args:
        job: Job being reconciled
        target_pods: Pods the job resolved to
        jobs: Jobs to check against (the job itself is skipped)

    Returns:
        The first conflict found, or a result with ``conflicted=False``
    """
    target_names = [pod.metadata.name for pod in target_pods]
    if not target_names:
        return NO_CONFLICT

    for other in jobs:
        if other.name == job.name or other.namespace != job.namespace:
            continue
        if other.is_terminal:
            continue

        claimed = other.status.active_pods or {}
        for pod_name in target_names:
            if pod_name in claimed:
                return ConflictResult(
                    conflicted=True,
                    reason=f"Pod {pod_name} is already being profiled by PowerTool {other.name}",
                    conflicting_job=other.name,
                    pod_name=pod_name,
                )

    return NO_CONFLICT
