"""Kubernetes access for PowerTool jobs, tool configs, pods and tokens."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.models.powertool import PowerTool
from powertool_operator.models.tool_config import PowerToolConfig

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api, CustomObjectsApi, V1EphemeralContainer, V1Pod

logger = logging.getLogger(__name__)


class StatusConflictError(Exception):
    """Raised when a status write loses a compare-and-swap race (HTTP 409)."""

    pass


class EphemeralContainerError(Exception):
    """Raised when an ephemeral container cannot be added to a pod."""

    pass


class TokenRequestError(Exception):
    """Raised when a service account token cannot be issued."""

    pass


class ClusterService:
    """Reads and writes the cluster state the reconciler works on.

    Wraps the CoreV1 and CustomObjects APIs. Every write that changes shared
    state carries the object's ``resourceVersion``, so a concurrent
    modification surfaces as a conflict instead of a lost update.

    Example:
        ```python
        cluster = ClusterService()
        job = cluster.get_powertool("default", "profile-nginx")
        pods = cluster.list_pods("default", "app=nginx")
        job = cluster.update_powertool_status(job)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the cluster service with lazy-loaded clients."""
        self.settings = settings or get_settings()
        self._core_api: CoreV1Api | None = None
        self._custom_api: CustomObjectsApi | None = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes clients if not already done."""
        if self._initialized:
            return

        try:
            # Try in-cluster config first (when running in K8s)
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            # Fall back to kubeconfig (for local development)
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig Kubernetes configuration")
            except config.ConfigException as e:
                logger.warning("Failed to load Kubernetes configuration: %s", e)
                raise RuntimeError("No Kubernetes configuration available") from e

        self._core_api = client.CoreV1Api()
        self._custom_api = client.CustomObjectsApi()
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        """Whether the Kubernetes clients have been configured."""
        return self._initialized

    @property
    def core_api(self) -> CoreV1Api:
        """Get the CoreV1 API client."""
        self._ensure_initialized()
        assert self._core_api is not None
        return self._core_api

    @property
    def custom_api(self) -> CustomObjectsApi:
        """Get the CustomObjects API client."""
        self._ensure_initialized()
        assert self._custom_api is not None
        return self._custom_api

    # -------------------------------------------------------------------------
    # PowerTool jobs
    # -------------------------------------------------------------------------

    def get_powertool(self, namespace: str, name: str) -> PowerTool | None:
        """Fetch a PowerTool, or None if it no longer exists."""
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                group=self.settings.api_group,
                version=self.settings.api_version,
                namespace=namespace,
                plural=self.settings.powertool_plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return PowerTool.model_validate(obj)

    def list_powertools(self, namespace: str | None = None) -> list[PowerTool]:
        """List PowerTools in a namespace, or across the cluster if namespace is None."""
        if namespace is None:
            result = self.custom_api.list_cluster_custom_object(
                group=self.settings.api_group,
                version=self.settings.api_version,
                plural=self.settings.powertool_plural,
            )
        else:
            result = self.custom_api.list_namespaced_custom_object(
                group=self.settings.api_group,
                version=self.settings.api_version,
                namespace=namespace,
                plural=self.settings.powertool_plural,
            )
        return [PowerTool.model_validate(item) for item in result.get("items", [])]

    def update_powertool_status(self, job: PowerTool) -> PowerTool:
        """Write the job's status subresource and return the stored object.

        Raises:
            StatusConflictError: If the job changed since it was read
        """
        try:
            obj = self.custom_api.replace_namespaced_custom_object_status(
                group=self.settings.api_group,
                version=self.settings.api_version,
                namespace=job.namespace,
                plural=self.settings.powertool_plural,
                name=job.name,
                body=job.to_resource(),
            )
        except ApiException as e:
            if e.status == 409:
                raise StatusConflictError(
                    f"PowerTool {job.namespace}/{job.name} was modified concurrently"
                ) from e
            raise
        return PowerTool.model_validate(obj)

    def watch_powertools(
        self, watcher: watch.Watch, timeout_seconds: int
    ) -> Iterator[tuple[str, PowerTool]]:
        """Stream (event type, PowerTool) pairs for every PowerTool in the cluster."""
        for event in watcher.stream(
            self.custom_api.list_cluster_custom_object,
            group=self.settings.api_group,
            version=self.settings.api_version,
            plural=self.settings.powertool_plural,
            timeout_seconds=timeout_seconds,
        ):
            obj: dict[str, Any] = event["object"]
            if event["type"] == "ERROR":
                logger.warning("PowerTool watch returned an error: %s", obj)
                return
            yield event["type"], PowerTool.model_validate(obj)

    # -------------------------------------------------------------------------
    # PowerToolConfig registry entries
    # -------------------------------------------------------------------------

    def get_tool_config(self, namespace: str, name: str) -> PowerToolConfig | None:
        """Fetch a PowerToolConfig, or None if it does not exist."""
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                group=self.settings.api_group,
                version=self.settings.api_version,
                namespace=namespace,
                plural=self.settings.tool_config_plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return PowerToolConfig.model_validate(obj)

    def list_tool_configs(self) -> list[PowerToolConfig]:
        """List PowerToolConfigs across the cluster."""
        result = self.custom_api.list_cluster_custom_object(
            group=self.settings.api_group,
            version=self.settings.api_version,
            plural=self.settings.tool_config_plural,
        )
        return [PowerToolConfig.model_validate(item) for item in result.get("items", [])]

    def update_tool_config_status(self, tool_config: PowerToolConfig) -> PowerToolConfig:
        """Write a PowerToolConfig's status subresource."""
        try:
            obj = self.custom_api.replace_namespaced_custom_object_status(
                group=self.settings.api_group,
                version=self.settings.api_version,
                namespace=tool_config.namespace,
                plural=self.settings.tool_config_plural,
                name=tool_config.name,
                body=tool_config.to_resource(),
            )
        except ApiException as e:
            if e.status == 409:
                raise StatusConflictError(
                    f"PowerToolConfig {tool_config.namespace}/{tool_config.name} "
                    "was modified concurrently"
                ) from e
            raise
        return PowerToolConfig.model_validate(obj)

    # -------------------------------------------------------------------------
    # Pods
    # -------------------------------------------------------------------------

    def list_pods(self, namespace: str, label_selector: str) -> list[V1Pod]:
        """List pods in a namespace matching a compiled label selector."""
        pods = self.core_api.list_namespaced_pod(
            namespace=namespace,
            label_selector=label_selector,
        )
        return list(pods.items)

    def add_ephemeral_container(self, pod: V1Pod, container: V1EphemeralContainer) -> V1Pod:
        """Append an ephemeral container to a pod with a conditional update.

        The pod's ``resourceVersion`` is sent along, so the update fails if the
        pod changed since it was listed.

        Raises:
            EphemeralContainerError: If the pod is gone or was modified
        """
        pod_copy = copy.deepcopy(pod)
        pod_copy.spec.ephemeral_containers = list(pod_copy.spec.ephemeral_containers or [])
        pod_copy.spec.ephemeral_containers.append(container)

        try:
            updated = self.core_api.replace_namespaced_pod_ephemeralcontainers(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                body=pod_copy,
            )
        except ApiException as e:
            raise EphemeralContainerError(
                f"Failed to add ephemeral container to pod {pod.metadata.name}: {e.reason}"
            ) from e

        logger.debug(
            "Added ephemeral container %s to pod %s/%s",
            container.name,
            pod.metadata.namespace,
            pod.metadata.name,
        )
        return updated

    # -------------------------------------------------------------------------
    # Service account tokens
    # -------------------------------------------------------------------------

    def create_service_account_token(
        self,
        namespace: str,
        service_account: str,
        audience: str,
        expiration_seconds: int,
    ) -> str:
        """Issue a bound token for a service account via the TokenRequest API.

        Raises:
            TokenRequestError: If the token cannot be created
        """
        token_request = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(
                audiences=[audience],
                expiration_seconds=expiration_seconds,
            )
        )
        try:
            result = self.core_api.create_namespaced_service_account_token(
                name=service_account,
                namespace=namespace,
                body=token_request,
            )
        except ApiException as e:
            raise TokenRequestError(f"Failed to create token: {e.reason}") from e
        return result.status.token


# Global singleton instance
_cluster_service: ClusterService | None = None


def get_cluster_service() -> ClusterService:
    """Get the global ClusterService instance."""
    global _cluster_service
    if _cluster_service is None:
        _cluster_service = ClusterService()
    return _cluster_service
