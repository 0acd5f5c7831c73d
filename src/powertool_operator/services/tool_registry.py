"""Lookup of PowerToolConfig registry entries by tool name."""

from __future__ import annotations

import logging
from typing import Protocol

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.models.tool_config import PowerToolConfig
from powertool_operator.services.cluster import ClusterService, get_cluster_service

logger = logging.getLogger(__name__)

CONFIG_NAME_SUFFIX = "-config"


class ToolConfigNotFoundError(Exception):
    """Raised when no registry entry exists for a tool."""

    def __init__(self, tool_name: str, namespaces: list[str]) -> None:
        self.tool_name = tool_name
        self.namespaces = namespaces
        super().__init__(f"PowerToolConfig not found for tool: {tool_name}")


class NamespaceNotAllowedError(Exception):
    """Raised when a tool may not be used from a job's namespace."""

    def __init__(self, namespace: str, tool_name: str, allowed: list[str]) -> None:
        self.namespace = namespace
        self.tool_name = tool_name
        self.allowed = allowed
        super().__init__(
            f"PowerTool namespace '{namespace}' is not allowed for tool '{tool_name}'. "
            f"Allowed namespaces: {allowed}"
        )


class ToolRegistry(Protocol):
    """Read-only access to tool registry entries."""

    def get(self, tool_name: str, job_namespace: str) -> PowerToolConfig:
        """Return the registry entry for a tool.

        Raises:
            ToolConfigNotFoundError: If no entry exists
        """
        ...


def config_name_for(tool_name: str) -> str:
    """Registry entries are named ``<tool>-config``."""
    return f"{tool_name}{CONFIG_NAME_SUFFIX}"


class ClusterToolRegistry:
    """Registry backed by PowerToolConfig resources in the cluster.

    Entries are searched in the configured namespaces first (the operator's
    system namespace by default), then in the job's own namespace. The first
    hit wins.
    """

    def __init__(
        self,
        cluster: ClusterService | None = None,
        search_namespaces: list[str] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._cluster = cluster
        self.search_namespaces = (
            list(search_namespaces)
            if search_namespaces is not None
            else list(self.settings.tool_config_namespaces)
        )

    @property
    def cluster(self) -> ClusterService:
        """Get the ClusterService, using global instance if not set."""
        if self._cluster is None:
            self._cluster = get_cluster_service()
        return self._cluster

    def namespaces_for(self, job_namespace: str) -> list[str]:
        """Search order for a job in the given namespace."""
        namespaces = list(self.search_namespaces)
        if job_namespace not in namespaces:
            namespaces.append(job_namespace)
        return namespaces

    def get(self, tool_name: str, job_namespace: str) -> PowerToolConfig:
        name = config_name_for(tool_name)
        namespaces = self.namespaces_for(job_namespace)

        for namespace in namespaces:
            tool_config = self.cluster.get_tool_config(namespace, name)
            if tool_config is not None:
                logger.debug("Found %s in namespace %s", name, namespace)
                return tool_config

        raise ToolConfigNotFoundError(tool_name, namespaces)


def validate_namespace_access(tool_config: PowerToolConfig, namespace: str) -> None:
    """Check a tool's namespace allow-list.

    Raises:
        NamespaceNotAllowedError: If the namespace is not on a non-empty allow-list
    """
    if tool_config.allows_namespace(namespace):
        return
    raise NamespaceNotAllowedError(
        namespace, tool_config.spec.name, list(tool_config.spec.allowed_namespaces or [])
    )
