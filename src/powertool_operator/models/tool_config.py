"""PowerToolConfig custom resource: the registry entry for a profiling tool."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from powertool_operator.models.k8s import Condition, ObjectMeta


class Capabilities(BaseModel):
    """Linux capabilities to add to or drop from the diagnostic container."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    add: list[str] | None = None
    drop: list[str] | None = None


class SecuritySpec(BaseModel):
    """Security posture of a tool.

    Attributes:
        allow_privileged: Run the diagnostic container privileged
        allow_host_pid: Reserved; ephemeral containers share the pod's PID setting
        capabilities: Capabilities to add/drop
        run_as_root: Force UID 0 regardless of the target's identity
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    allow_privileged: bool | None = Field(default=None, alias="allowPrivileged")
    allow_host_pid: bool | None = Field(default=None, alias="allowHostPID")
    capabilities: Capabilities | None = None
    run_as_root: bool | None = Field(default=None, alias="runAsRoot")


class ResourceList(BaseModel):
    """CPU and memory quantities, e.g. ``100m`` and ``64Mi``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    cpu: str | None = None
    memory: str | None = None


class ResourceSpec(BaseModel):
    """Resource requests and limits for the diagnostic container."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    requests: ResourceList | None = None
    limits: ResourceList | None = None


class PowerToolConfigSpec(BaseModel):
    """Desired state of a PowerToolConfig."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    image: str
    security_context: SecuritySpec = Field(default_factory=SecuritySpec, alias="securityContext")
    allowed_namespaces: list[str] | None = Field(default=None, alias="allowedNamespaces")
    description: str | None = None
    version: str | None = None
    default_args: list[str] | None = Field(default=None, alias="defaultArgs")
    resources: ResourceSpec | None = None


class PowerToolConfigStatus(BaseModel):
    """Observed state of a PowerToolConfig."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    phase: str | None = None
    last_validated: datetime | None = Field(default=None, alias="lastValidated")
    conditions: list[Condition] = Field(default_factory=list)


class PowerToolConfig(BaseModel):
    """A PowerToolConfig custom resource."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: ObjectMeta
    spec: PowerToolConfigSpec
    status: PowerToolConfigStatus = Field(default_factory=PowerToolConfigStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or "default"

    def allows_namespace(self, namespace: str) -> bool:
        """An empty allow-list permits every namespace."""
        if not self.spec.allowed_namespaces:
            return True
        return namespace in self.spec.allowed_namespaces

    def to_resource(self) -> dict[str, Any]:
        """Serialize to the camelCase dict the Kubernetes API expects."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
