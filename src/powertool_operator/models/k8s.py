"""Kubernetes object fragments shared by the PowerTool custom resources."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the operator.

    Unknown metadata fields (labels, annotations, managedFields, ...) are kept
    so that a resource can be written back without losing them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    namespace: str | None = None
    uid: str = ""
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    generation: int | None = None
    creation_timestamp: datetime | None = Field(default=None, alias="creationTimestamp")
    deletion_timestamp: datetime | None = Field(default=None, alias="deletionTimestamp")
    finalizers: list[str] | None = None


class Condition(BaseModel):
    """A named, timestamped status fact. At most one per type on a resource.

    Attributes:
        type: Condition type (e.g. Running, Completed)
        status: "True", "False" or "Unknown"
        last_transition_time: When ``status`` last changed
        reason: Machine-readable reason
        message: Human-readable detail
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str
    status: str
    last_transition_time: datetime = Field(alias="lastTransitionTime")
    reason: str = ""
    message: str = ""


class LabelSelectorRequirement(BaseModel):
    """A single ``matchExpressions`` entry of a label selector."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    operator: str
    values: list[str] | None = None


class LabelSelector(BaseModel):
    """Kubernetes label selector (matchLabels AND matchExpressions)."""

    model_config = ConfigDict(populate_by_name=True)

    match_labels: dict[str, str] | None = Field(default=None, alias="matchLabels")
    match_expressions: list[LabelSelectorRequirement] | None = Field(
        default=None, alias="matchExpressions"
    )
