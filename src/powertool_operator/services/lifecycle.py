"""Per-pod lifecycle decisions for diagnostic ephemeral containers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubernetes.client import V1Pod


class PodAction(str, Enum):
    """What a reconciliation pass should do for one target pod."""

    KEEP = "keep"  # Tracked container still running
    RELEASE = "release"  # Tracked container finished, drop the entry
    ADOPT = "adopt"  # Running container from an earlier pass, start tracking it
    SKIP = "skip"  # Container already ran to completion, nothing to do
    CREATE = "create"  # No container yet, create one


@dataclass(frozen=True)
class PodDecision:
    """Decision for one pod and the container name it concerns."""

    pod_name: str
    action: PodAction
    container_name: str


def has_ephemeral_container(pod: V1Pod, container_name: str) -> bool:
    """Whether the pod spec declares an ephemeral container with this name."""
    containers = (pod.spec.ephemeral_containers if pod.spec else None) or []
    return any(container.name == container_name for container in containers)


def is_container_running(pod: V1Pod, container_name: str) -> bool:
    """Whether an ephemeral container is (or is about to be) running.

    The container must be declared in the pod spec. If the kubelet has not
    reported a status for it yet, it is treated as running.
    """
    if not has_ephemeral_container(pod, container_name):
        return False

    statuses = (pod.status.ephemeral_container_statuses if pod.status else None) or []
    for status in statuses:
        if status.name == container_name:
            return status.state is not None and status.state.running is not None

    return True


def decide_pod_action(
    active_pods: Mapping[str, str], pod: V1Pod, container_name: str
) -> PodDecision:
    """Decide what to do for one pod, given the tracked containers.

    Args:
        active_pods: Snapshot of pod name -> tracked container name
        pod: Current state of the target pod
        container_name: Deterministic container name for the job

    Returns:
        The decision; the snapshot is not modified
    """
    pod_name = pod.metadata.name

    tracked = active_pods.get(pod_name)
    if tracked is not None:
        if is_container_running(pod, tracked):
            return PodDecision(pod_name, PodAction.KEEP, tracked)
        return PodDecision(pod_name, PodAction.RELEASE, tracked)

    if has_ephemeral_container(pod, container_name):
        if is_container_running(pod, container_name):
            return PodDecision(pod_name, PodAction.ADOPT, container_name)
        return PodDecision(pod_name, PodAction.SKIP, container_name)

    return PodDecision(pod_name, PodAction.CREATE, container_name)


def apply_decision(active_pods: dict[str, str], decision: PodDecision) -> None:
    """Record a KEEP/ADOPT/RELEASE decision in a mutable copy of the map.

    CREATE is recorded by the caller only once the container was created.
    """
    if decision.action in (PodAction.KEEP, PodAction.ADOPT):
        active_pods[decision.pod_name] = decision.container_name
    elif decision.action == PodAction.RELEASE:
        active_pods.pop(decision.pod_name, None)
