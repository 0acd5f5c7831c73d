"""Service layer for reconciliation and cluster access."""

from powertool_operator.services.cluster import (
    ClusterService,
    EphemeralContainerError,
    StatusConflictError,
    TokenRequestError,
    get_cluster_service,
)
from powertool_operator.services.controller import (
    ControllerMetrics,
    PowerToolController,
    ReconcileQueue,
    get_powertool_controller,
)
from powertool_operator.services.reconciler import (
    PowerToolReconciler,
    ReconcileResult,
    get_reconciler,
)
from powertool_operator.services.target_resolver import InvalidSelectorError
from powertool_operator.services.token_issuer import ServiceAccountTokenIssuer, TokenIssuer
from powertool_operator.services.tool_config_reconciler import (
    ToolConfigController,
    ToolConfigMetrics,
    ToolConfigReconciler,
    get_tool_config_controller,
    get_tool_config_reconciler,
)
from powertool_operator.services.tool_registry import (
    ClusterToolRegistry,
    NamespaceNotAllowedError,
    ToolConfigNotFoundError,
    ToolRegistry,
)

__all__ = [
    # Cluster access
    "ClusterService",
    "EphemeralContainerError",
    "StatusConflictError",
    "TokenRequestError",
    "get_cluster_service",
    # PowerTool controller
    "ControllerMetrics",
    "PowerToolController",
    "ReconcileQueue",
    "get_powertool_controller",
    # Reconciliation
    "InvalidSelectorError",
    "PowerToolReconciler",
    "ReconcileResult",
    "get_reconciler",
    # Collaborators
    "ClusterToolRegistry",
    "NamespaceNotAllowedError",
    "ServiceAccountTokenIssuer",
    "TokenIssuer",
    "ToolConfigNotFoundError",
    "ToolRegistry",
    # PowerToolConfig controller
    "ToolConfigController",
    "ToolConfigMetrics",
    "ToolConfigReconciler",
    "get_tool_config_controller",
    "get_tool_config_reconciler",
]
