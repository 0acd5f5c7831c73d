"""Pytest configuration and shared fixtures for powertool-operator tests."""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

import pytest
from kubernetes.client import (
    V1Container,
    V1ContainerState,
    V1ContainerStateRunning,
    V1ContainerStateTerminated,
    V1ContainerStatus,
    V1EphemeralContainer,
    V1ObjectMeta,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodSecurityContext,
    V1PodSpec,
    V1PodStatus,
    V1SecurityContext,
    V1Volume,
)

from powertool_operator.core.config import Settings
from powertool_operator.models.powertool import PowerTool
from powertool_operator.models.tool_config import PowerToolConfig
from powertool_operator.services.cluster import EphemeralContainerError, StatusConflictError


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "live_cluster: marks tests that require a live Kubernetes cluster",
    )


class FakeCluster:
    """In-memory stand-in for ClusterService.

    Objects are copied on the way in and out, as they would be over the API.
    Pod label selectors support the equality clauses the tests use.
    """

    def __init__(self) -> None:
        self.jobs: dict[tuple[str, str], PowerTool] = {}
        self.tool_configs: dict[tuple[str, str], PowerToolConfig] = {}
        self.pods: dict[tuple[str, str], V1Pod] = {}
        self.status_updates: list[PowerTool] = []
        self.tool_config_updates: list[PowerToolConfig] = []
        self.created_containers: list[tuple[str, V1EphemeralContainer]] = []
        self.pod_list_calls: list[tuple[str, str]] = []
        self.token_requests: list[dict[str, Any]] = []
        self.failing_pods: set[str] = set()
        self.status_conflicts = 0

    # PowerTools

    def add_job(self, job: PowerTool) -> None:
        self.jobs[(job.namespace, job.name)] = job.model_copy(deep=True)

    def job(self, namespace: str, name: str) -> PowerTool:
        return self.jobs[(namespace, name)]

    def get_powertool(self, namespace: str, name: str) -> PowerTool | None:
        job = self.jobs.get((namespace, name))
        return job.model_copy(deep=True) if job is not None else None

    def list_powertools(self, namespace: str | None = None) -> list[PowerTool]:
        return [
            job.model_copy(deep=True)
            for (job_namespace, _), job in self.jobs.items()
            if namespace is None or job_namespace == namespace
        ]

    def update_powertool_status(self, job: PowerTool) -> PowerTool:
        if self.status_conflicts > 0:
            self.status_conflicts -= 1
            raise StatusConflictError(f"PowerTool {job.namespace}/{job.name} was modified")
        stored = job.model_copy(deep=True)
        self.jobs[(job.namespace, job.name)] = stored
        self.status_updates.append(stored.model_copy(deep=True))
        return stored.model_copy(deep=True)

    # PowerToolConfigs

    def add_tool_config(self, tool_config: PowerToolConfig) -> None:
        self.tool_configs[(tool_config.namespace, tool_config.name)] = tool_config

    def get_tool_config(self, namespace: str, name: str) -> PowerToolConfig | None:
        tool_config = self.tool_configs.get((namespace, name))
        return tool_config.model_copy(deep=True) if tool_config is not None else None

    def list_tool_configs(self) -> list[PowerToolConfig]:
        return [tool_config.model_copy(deep=True) for tool_config in self.tool_configs.values()]

    def update_tool_config_status(self, tool_config: PowerToolConfig) -> PowerToolConfig:
        stored = tool_config.model_copy(deep=True)
        self.tool_configs[(tool_config.namespace, tool_config.name)] = stored
        self.tool_config_updates.append(stored)
        return stored.model_copy(deep=True)

    # Pods

    def add_pod(self, pod: V1Pod) -> None:
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod

    def pod(self, namespace: str, name: str) -> V1Pod:
        return self.pods[(namespace, name)]

    def list_pods(self, namespace: str, label_selector: str) -> list[V1Pod]:
        self.pod_list_calls.append((namespace, label_selector))
        required = dict(
            clause.split("=", 1) for clause in label_selector.split(",") if clause
        )
        return [
            copy.deepcopy(pod)
            for (pod_namespace, _), pod in sorted(self.pods.items())
            if pod_namespace == namespace
            and all((pod.metadata.labels or {}).get(k) == v for k, v in required.items())
        ]

    def add_ephemeral_container(self, pod: V1Pod, container: V1EphemeralContainer) -> V1Pod:
        if pod.metadata.name in self.failing_pods:
            raise EphemeralContainerError(
                f"Failed to add ephemeral container to pod {pod.metadata.name}"
            )
        stored = self.pods[(pod.metadata.namespace, pod.metadata.name)]
        stored.spec.ephemeral_containers = list(stored.spec.ephemeral_containers or [])
        stored.spec.ephemeral_containers.append(container)
        self.created_containers.append((pod.metadata.name, container))
        return copy.deepcopy(stored)

    def terminate_container(self, namespace: str, pod_name: str, container_name: str) -> None:
        """Report a diagnostic container as exited."""
        set_ephemeral_status(self.pods[(namespace, pod_name)], container_name, running=False)

    # Tokens

    def create_service_account_token(
        self, namespace: str, service_account: str, audience: str, expiration_seconds: int
    ) -> str:
        self.token_requests.append(
            {
                "namespace": namespace,
                "service_account": service_account,
                "audience": audience,
                "expiration_seconds": expiration_seconds,
            }
        )
        return "collector-token"


def set_ephemeral_status(pod: V1Pod, container_name: str, running: bool) -> None:
    """Set the reported state of an ephemeral container on a pod."""
    if running:
        state = V1ContainerState(running=V1ContainerStateRunning())
    else:
        state = V1ContainerState(terminated=V1ContainerStateTerminated(exit_code=0))

    if pod.status is None:
        pod.status = V1PodStatus()
    statuses = [
        status
        for status in (pod.status.ephemeral_container_statuses or [])
        if status.name != container_name
    ]
    statuses.append(
        V1ContainerStatus(
            name=container_name,
            image="ghcr.io/example/aperf:latest",
            image_id="",
            ready=False,
            restart_count=0,
            state=state,
        )
    )
    pod.status.ephemeral_container_statuses = statuses


@pytest.fixture
def settings() -> Settings:
    """Create test settings with telemetry off and fast controller intervals."""
    return Settings(
        otel_enabled=False,
        controller_enabled=True,
        tool_config_controller_enabled=True,
        max_concurrent_reconciles=2,
        resync_interval_seconds=1,
        tool_config_interval_seconds=1,
    )


@pytest.fixture
def cluster() -> FakeCluster:
    """Create an empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def make_pod() -> Callable[..., V1Pod]:
    """Factory for target pods."""

    def _make_pod(
        name: str,
        labels: dict[str, str] | None = None,
        namespace: str = "default",
        containers: list[str] | None = None,
        run_as_user: int | None = None,
        run_as_group: int | None = None,
        run_as_non_root: bool | None = None,
        container_security: V1SecurityContext | None = None,
        pvc_volumes: dict[str, str] | None = None,
    ) -> V1Pod:
        pod_security = None
        if run_as_user is not None or run_as_group is not None or run_as_non_root is not None:
            pod_security = V1PodSecurityContext(
                run_as_user=run_as_user,
                run_as_group=run_as_group,
                run_as_non_root=run_as_non_root,
            )

        volumes = None
        if pvc_volumes:
            volumes = [
                V1Volume(
                    name=volume_name,
                    persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                        claim_name=claim_name
                    ),
                )
                for volume_name, claim_name in pvc_volumes.items()
            ]

        container_names = containers if containers is not None else ["app"]
        return V1Pod(
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels if labels is not None else {"app": "web"},
                resource_version="1",
            ),
            spec=V1PodSpec(
                containers=[
                    V1Container(
                        name=container_name,
                        image="nginx:1.27",
                        security_context=container_security if index == 0 else None,
                    )
                    for index, container_name in enumerate(container_names)
                ],
                security_context=pod_security,
                volumes=volumes,
            ),
            status=V1PodStatus(phase="Running"),
        )

    return _make_pod


@pytest.fixture
def make_job() -> Callable[..., PowerTool]:
    """Factory for PowerTool jobs."""

    def _make_job(
        name: str = "profile-web",
        namespace: str = "default",
        uid: str = "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0",
        tool: str = "aperf",
        duration: str = "30s",
        match_labels: dict[str, str] | None = None,
        selector: dict[str, Any] | None = None,
        output: dict[str, Any] | None = None,
        args: list[str] | None = None,
        container: str | None = None,
        status: dict[str, Any] | None = None,
        with_selector: bool = True,
        **metadata: Any,
    ) -> PowerTool:
        if selector is None:
            selector = {"matchLabels": match_labels if match_labels is not None else {"app": "web"}}

        targets: dict[str, Any] = {"labelSelector": selector} if with_selector else {}
        if container is not None:
            targets["container"] = container

        tool_spec: dict[str, Any] = {"name": tool, "duration": duration}
        if args is not None:
            tool_spec["args"] = args

        return PowerTool.model_validate(
            {
                "apiVersion": "codriverlabs.ai.toe.run/v1alpha1",
                "kind": "PowerTool",
                "metadata": {"name": name, "namespace": namespace, "uid": uid, **metadata},
                "spec": {
                    "targets": targets,
                    "tool": tool_spec,
                    "output": output or {"mode": "ephemeral"},
                },
                "status": status or {},
            }
        )

    return _make_job


@pytest.fixture
def make_tool_config() -> Callable[..., PowerToolConfig]:
    """Factory for PowerToolConfig registry entries."""

    def _make_tool_config(
        tool: str = "aperf",
        namespace: str = "toe-system",
        image: str = "ghcr.io/example/aperf:latest",
        allowed_namespaces: list[str] | None = None,
        security_context: dict[str, Any] | None = None,
        default_args: list[str] | None = None,
        resources: dict[str, Any] | None = None,
    ) -> PowerToolConfig:
        spec: dict[str, Any] = {
            "name": tool,
            "image": image,
            "securityContext": security_context or {"allowPrivileged": True},
        }
        if allowed_namespaces is not None:
            spec["allowedNamespaces"] = allowed_namespaces
        if default_args is not None:
            spec["defaultArgs"] = default_args
        if resources is not None:
            spec["resources"] = resources

        return PowerToolConfig.model_validate(
            {
                "apiVersion": "codriverlabs.ai.toe.run/v1alpha1",
                "kind": "PowerToolConfig",
                "metadata": {"name": f"{tool}-config", "namespace": namespace},
                "spec": spec,
            }
        )

    return _make_tool_config


@pytest.fixture
def set_container_state() -> Callable[[V1Pod, str, bool], None]:
    """Set the reported running/terminated state of an ephemeral container."""
    return set_ephemeral_status
