"""Pydantic models for the PowerTool custom resources."""

from powertool_operator.models.common import (
    ConditionReason,
    ConditionType,
    OutputMode,
    PowerToolPhase,
)
from powertool_operator.models.k8s import (
    Condition,
    LabelSelector,
    LabelSelectorRequirement,
    ObjectMeta,
)
from powertool_operator.models.powertool import (
    CollectorSpec,
    OutputSpec,
    PowerTool,
    PowerToolSpec,
    PowerToolStatus,
    PVCSpec,
    TargetSpec,
    ToolSpec,
)
from powertool_operator.models.tool_config import (
    Capabilities,
    PowerToolConfig,
    PowerToolConfigSpec,
    PowerToolConfigStatus,
    ResourceList,
    ResourceSpec,
    SecuritySpec,
)

__all__ = [
    # Enums
    "ConditionReason",
    "ConditionType",
    "OutputMode",
    "PowerToolPhase",
    # Kubernetes fragments
    "Condition",
    "LabelSelector",
    "LabelSelectorRequirement",
    "ObjectMeta",
    # PowerTool
    "CollectorSpec",
    "OutputSpec",
    "PowerTool",
    "PowerToolSpec",
    "PowerToolStatus",
    "PVCSpec",
    "TargetSpec",
    "ToolSpec",
    # PowerToolConfig
    "Capabilities",
    "PowerToolConfig",
    "PowerToolConfigSpec",
    "PowerToolConfigStatus",
    "ResourceList",
    "ResourceSpec",
    "SecuritySpec",
]
