"""Security context and resource translation for diagnostic containers."""

from __future__ import annotations

from kubernetes import client
from kubernetes.client import V1Container, V1Pod, V1ResourceRequirements, V1SecurityContext

from powertool_operator.models.tool_config import ResourceList, ResourceSpec, SecuritySpec

ROOT_USER_ID = 0


def get_target_container(pod: V1Pod, container_name: str | None) -> V1Container | None:
    """Pick the container a diagnostic container should attach to.

    The container named by ``container_name`` wins; otherwise (no name, an
    empty name, or a name the pod does not have) the first container is used.

    Returns:
        The target container, or None if the pod has no containers
    """
    containers = (pod.spec.containers if pod.spec else None) or []
    if not containers:
        return None

    if container_name:
        for container in containers:
            if container.name == container_name:
                return container

    return containers[0]


def build_security_context(
    security: SecuritySpec,
    pod: V1Pod | None = None,
    target_container: V1Container | None = None,
) -> V1SecurityContext:
    """Translate a tool's security policy into a container security context.

    Privilege and capabilities are copied from the policy. The run-as
    identity is inherited from the target: with ``run_as_root`` the user is
    forced to 0 while the group still follows the target container, then the
    pod. Without it, pod-level and then container-level ``runAsUser``,
    ``runAsGroup`` and ``runAsNonRoot`` are copied where explicitly set.

    Args:
        security: Security policy from the tool's registry entry
        pod: Target pod, for pod-level identity
        target_container: Target container, for container-level identity

    Returns:
        Security context for the ephemeral container
    """
    security_context = client.V1SecurityContext()

    if security.allow_privileged is not None:
        security_context.privileged = security.allow_privileged

    if security.capabilities is not None:
        capabilities = client.V1Capabilities()
        if security.capabilities.add is not None:
            capabilities.add = list(security.capabilities.add)
        if security.capabilities.drop is not None:
            capabilities.drop = list(security.capabilities.drop)
        security_context.capabilities = capabilities

    pod_context = pod.spec.security_context if pod is not None and pod.spec else None
    container_context = target_container.security_context if target_container else None

    if security.run_as_root:
        security_context.run_as_user = ROOT_USER_ID
        security_context.run_as_non_root = False

        if container_context is not None and container_context.run_as_group is not None:
            security_context.run_as_group = container_context.run_as_group
        elif pod_context is not None and pod_context.run_as_group is not None:
            security_context.run_as_group = pod_context.run_as_group
        return security_context

    for source in (pod_context, container_context):
        if source is None:
            continue
        if source.run_as_user is not None:
            security_context.run_as_user = source.run_as_user
        if source.run_as_group is not None:
            security_context.run_as_group = source.run_as_group
        if source.run_as_non_root is not None:
            security_context.run_as_non_root = source.run_as_non_root

    return security_context


def _to_quantities(resources: ResourceList | None) -> dict[str, str] | None:
    if resources is None:
        return None
    quantities: dict[str, str] = {}
    if resources.cpu:
        quantities["cpu"] = resources.cpu
    if resources.memory:
        quantities["memory"] = resources.memory
    return quantities or None


def build_resource_requirements(resources: ResourceSpec | None) -> V1ResourceRequirements | None:
    """Map a tool's resource caps to container resource requirements.

    Returns:
        Resource requirements, or None when the tool declares none
    """
    if resources is None:
        return None

    requests = _to_quantities(resources.requests)
    limits = _to_quantities(resources.limits)
    if requests is None and limits is None:
        return None

    return client.V1ResourceRequirements(requests=requests, limits=limits)
