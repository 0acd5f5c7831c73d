"""Tests for PowerToolConfig registry lookup."""

import pytest

from powertool_operator.core.config import Settings
from powertool_operator.services.tool_registry import (
    ClusterToolRegistry,
    NamespaceNotAllowedError,
    ToolConfigNotFoundError,
    config_name_for,
    validate_namespace_access,
)


@pytest.fixture
def registry(cluster, settings: Settings) -> ClusterToolRegistry:
    """Create a registry backed by the in-memory cluster."""
    return ClusterToolRegistry(cluster, settings=settings)


class TestClusterToolRegistry:
    """Tests for ClusterToolRegistry."""

    def test_config_name(self):
        assert config_name_for("aperf") == "aperf-config"

    def test_search_order(self, registry: ClusterToolRegistry):
        assert registry.namespaces_for("shop") == ["toe-system", "shop"]
        assert registry.namespaces_for("toe-system") == ["toe-system"]

    def test_system_namespace_wins(self, registry, cluster, make_tool_config):
        cluster.add_tool_config(make_tool_config(namespace="shop", image="shop/aperf:1"))
        cluster.add_tool_config(make_tool_config(namespace="toe-system", image="toe/aperf:1"))

        assert registry.get("aperf", "shop").spec.image == "toe/aperf:1"

    def test_falls_back_to_job_namespace(self, registry, cluster, make_tool_config):
        cluster.add_tool_config(make_tool_config(namespace="shop", image="shop/aperf:1"))

        assert registry.get("aperf", "shop").spec.image == "shop/aperf:1"

    def test_not_found(self, registry: ClusterToolRegistry):
        with pytest.raises(ToolConfigNotFoundError) as exc_info:
            registry.get("aperf", "shop")

        assert str(exc_info.value) == "PowerToolConfig not found for tool: aperf"
        assert exc_info.value.namespaces == ["toe-system", "shop"]

    def test_custom_search_namespaces(self, cluster, settings, make_tool_config):
        cluster.add_tool_config(make_tool_config(namespace="tools"))
        registry = ClusterToolRegistry(cluster, search_namespaces=["tools"], settings=settings)

        assert registry.get("aperf", "shop").namespace == "tools"


class TestNamespaceAccess:
    """Tests for the tool's namespace allow-list."""

    def test_allowed(self, make_tool_config):
        validate_namespace_access(make_tool_config(allowed_namespaces=["shop"]), "shop")
        validate_namespace_access(make_tool_config(), "anywhere")

    def test_denied(self, make_tool_config):
        with pytest.raises(NamespaceNotAllowedError) as exc_info:
            validate_namespace_access(make_tool_config(allowed_namespaces=["perf"]), "shop")

        assert "shop" in str(exc_info.value)
        assert exc_info.value.allowed == ["perf"]
