"""PowerTool custom resource: a request to profile a set of running pods."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from powertool_operator.models.common import OutputMode, PowerToolPhase
from powertool_operator.models.k8s import Condition, LabelSelector, ObjectMeta


class NamespaceSelector(BaseModel):
    """Namespace selection criteria (carried, not evaluated by the engine)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    match_names: list[str] | None = Field(default=None, alias="matchNames")
    match_regex: str | None = Field(default=None, alias="matchRegex")


class TargetSpec(BaseModel):
    """Which pods to profile.

    Attributes:
        label_selector: Pods in the job's namespace matching this selector.
            ``None`` matches nothing.
        container: Name of the container to attach to (defaults to the first)
        namespace_selector: Reserved for cross-namespace targeting
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label_selector: LabelSelector | None = Field(default=None, alias="labelSelector")
    container: str | None = None
    namespace_selector: NamespaceSelector | None = Field(default=None, alias="namespaceSelector")


class ToolSpec(BaseModel):
    """Which tool to run and for how long."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    duration: str
    args: list[str] | None = None
    warmup: str | None = None
    resolution_preset: str | None = Field(default=None, alias="resolutionPreset")
    max_cpu_percent: int | None = Field(default=None, alias="maxCPUPercent")


class PVCSpec(BaseModel):
    """PersistentVolumeClaim output target."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    claim_name: str = Field(alias="claimName")
    path: str | None = None


class CollectorSpec(BaseModel):
    """Collector service output target."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    endpoint: str


class OutputSpec(BaseModel):
    """Where profiling results go."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    mode: OutputMode = OutputMode.EPHEMERAL
    pvc: PVCSpec | None = None
    collector: CollectorSpec | None = None
    rolling_interval: str | None = Field(default=None, alias="rollingInterval")
    compress: str | None = None
    retention_days: int | None = Field(default=None, alias="retentionDays")


class PowerToolSpec(BaseModel):
    """Desired state of a PowerTool."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    targets: TargetSpec
    tool: ToolSpec
    output: OutputSpec = Field(default_factory=OutputSpec)
    ttl_seconds_after_finished: int | None = Field(
        default=None, alias="ttlSecondsAfterFinished"
    )


class PowerToolStatus(BaseModel):
    """Observed state of a PowerTool, owned by the reconciler.

    Attributes:
        phase: Lifecycle phase (unset until the first reconciliation)
        selected_pods: Pods matched at the last resolution
        completed_pods: ``selected_pods`` minus pods with an active container
        active_pods: Pod name -> diagnostic container name
        conditions: At most one condition per type
        started_at: When the job was first reconciled
        finished_at: When the job reached Completed
        last_error: Message of the last fatal reconciliation error
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    phase: PowerToolPhase | None = None
    selected_pods: int | None = Field(default=None, alias="selectedPods")
    completed_pods: int | None = Field(default=None, alias="completedPods")
    active_pods: dict[str, str] | None = Field(default=None, alias="activePods")
    conditions: list[Condition] = Field(default_factory=list)
    started_at: datetime | None = Field(default=None, alias="startedAt")
    finished_at: datetime | None = Field(default=None, alias="finishedAt")
    last_error: str | None = Field(default=None, alias="lastError")
    bytes_written: str | None = Field(default=None, alias="bytesWritten")
    artifacts: list[str] | None = None

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class PowerTool(BaseModel):
    """A PowerTool custom resource."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: ObjectMeta
    spec: PowerToolSpec
    status: PowerToolStatus = Field(default_factory=PowerToolStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or "default"

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def is_terminal(self) -> bool:
        """Whether the job's phase is Completed or Failed."""
        return self.status.phase is not None and self.status.phase.is_terminal

    def to_resource(self) -> dict[str, Any]:
        """Serialize to the camelCase dict the Kubernetes API expects."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
