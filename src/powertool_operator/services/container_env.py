"""Environment and descriptor construction for diagnostic ephemeral containers.

The environment variable names are a contract with the profiling images:

    PROFILER_TOOL, PROFILER_DURATION, TARGET_POD_NAME, TARGET_NAMESPACE,
    OUTPUT_MODE, POD_MATCHING_LABELS, TOOL_ARGS, TOOL_ARG_<n>,
    PVC_PATH (pvc mode), COLLECTOR_ENDPOINT / COLLECTOR_TOKEN /
    POWERTOOL_JOB_ID (collector mode)
"""

from __future__ import annotations

import logging
import re

from kubernetes import client
from kubernetes.client import V1EnvVar, V1EphemeralContainer, V1Pod

from powertool_operator.models.common import OutputMode
from powertool_operator.models.k8s import LabelSelector
from powertool_operator.models.powertool import PowerTool
from powertool_operator.models.tool_config import PowerToolConfig
from powertool_operator.services.security_context import (
    build_resource_requirements,
    build_security_context,
    get_target_container,
)

logger = logging.getLogger(__name__)

CONTAINER_NAME_PREFIX = "powertool"
UNKNOWN_LABELS = "unknown"
DEFAULT_PVC_VOLUME_NAME = "profiling-storage"
DEFAULT_PVC_MOUNT_PATH = "/mnt/profiling-storage"
IMAGE_PULL_POLICY = "Always"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class InvalidDurationError(ValueError):
    """Raised when a tool duration is not a valid duration string."""

    pass


def container_name_for(job: PowerTool) -> str:
    """Deterministic diagnostic container name for a job.

    The same job always maps to the same name, which is how containers
    created by an earlier pass are recognised.
    """
    return f"{CONTAINER_NAME_PREFIX}-{job.name}-{job.uid[:8]}"


def parse_duration(value: str) -> float:
    """Parse a duration such as ``30s``, ``5m`` or ``1h30m`` into seconds.

    Raises:
        InvalidDurationError: If the string is not a valid duration
    """
    text = value.strip()
    if text == "0":
        return 0.0

    sign = 1.0
    if text and text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if not text:
        raise InvalidDurationError(f"invalid duration: {value!r}")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise InvalidDurationError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise InvalidDurationError(f"invalid duration: {value!r}")

    return sign * total


def compute_token_duration(
    collection_seconds: float,
    buffer_seconds: int = 60,
    minimum_seconds: int = 600,
) -> int:
    """Lifetime to request for a collector token.

    The token must outlive the collection plus upload overhead, and the
    TokenRequest API rejects lifetimes under ten minutes.
    """
    duration = int(collection_seconds) + buffer_seconds
    if duration < minimum_seconds:
        logger.info(
            "Token duration %ss below minimum, using %ss (collection %ss)",
            duration,
            minimum_seconds,
            collection_seconds,
        )
        duration = minimum_seconds
    return duration


def extract_matching_labels(
    selector: LabelSelector | None, pod_labels: dict[str, str] | None
) -> str:
    """Render the first selector label the pod carries as ``key-value``.

    Returns:
        ``key-value`` for the first ``matchLabels`` entry present on the pod,
        or ``unknown``
    """
    if selector is None or not selector.match_labels:
        return UNKNOWN_LABELS

    labels = pod_labels or {}
    for key, value in selector.match_labels.items():
        if labels.get(key) == value:
            return f"{key}-{value}"

    return UNKNOWN_LABELS


def find_pvc_volume_name(pod: V1Pod, claim_name: str) -> str:
    """Name of the pod volume backed by the given claim, or the default name."""
    volumes = (pod.spec.volumes if pod.spec else None) or []
    for volume in volumes:
        claim = volume.persistent_volume_claim
        if claim is not None and claim.claim_name == claim_name:
            return volume.name
    return DEFAULT_PVC_VOLUME_NAME


def build_env_vars(
    job: PowerTool,
    pod: V1Pod,
    default_args: list[str] | None = None,
) -> list[V1EnvVar]:
    """Build the environment for a diagnostic container.

    Args:
        job: PowerTool being executed
        pod: Pod the container is attached to
        default_args: Registry default arguments, used when the job has none

    Returns:
        Environment variables in a stable order
    """
    spec = job.spec
    env_vars = [
        client.V1EnvVar(name="PROFILER_TOOL", value=spec.tool.name),
        client.V1EnvVar(name="PROFILER_DURATION", value=spec.tool.duration),
        client.V1EnvVar(name="TARGET_POD_NAME", value=pod.metadata.name),
        client.V1EnvVar(name="TARGET_NAMESPACE", value=pod.metadata.namespace),
        client.V1EnvVar(name="OUTPUT_MODE", value=spec.output.mode.value),
        client.V1EnvVar(
            name="POD_MATCHING_LABELS",
            value=extract_matching_labels(spec.targets.label_selector, pod.metadata.labels),
        ),
    ]

    args = spec.tool.args if spec.tool.args else default_args
    if args:
        env_vars.append(client.V1EnvVar(name="TOOL_ARGS", value=" ".join(args)))
        env_vars.extend(
            client.V1EnvVar(name=f"TOOL_ARG_{index}", value=arg) for index, arg in enumerate(args)
        )

    if spec.output.mode == OutputMode.PVC:
        path = spec.output.pvc.path if spec.output.pvc and spec.output.pvc.path else None
        env_vars.append(client.V1EnvVar(name="PVC_PATH", value=path or DEFAULT_PVC_MOUNT_PATH))

    return env_vars


def build_collector_env_vars(job: PowerTool, token: str) -> list[V1EnvVar]:
    """Environment telling the image where and how to upload results."""
    endpoint = job.spec.output.collector.endpoint if job.spec.output.collector else ""
    return [
        client.V1EnvVar(name="COLLECTOR_ENDPOINT", value=endpoint),
        client.V1EnvVar(name="COLLECTOR_TOKEN", value=token),
        client.V1EnvVar(name="POWERTOOL_JOB_ID", value=job.name),
    ]


def build_ephemeral_container(
    job: PowerTool,
    tool_config: PowerToolConfig,
    pod: V1Pod,
    container_name: str,
    collector_token: str | None = None,
) -> V1EphemeralContainer:
    """Build the diagnostic container descriptor for one pod.

    Args:
        job: PowerTool being executed
        tool_config: Registry entry supplying image, security and resources
        pod: Target pod
        container_name: Deterministic container name for the job
        collector_token: Upload token, for collector output

    Returns:
        Ephemeral container ready to be appended to the pod
    """
    target_container = get_target_container(pod, job.spec.targets.container)

    env_vars = build_env_vars(job, pod, default_args=tool_config.spec.default_args)
    if collector_token is not None:
        env_vars.extend(build_collector_env_vars(job, collector_token))

    volume_mounts = None
    if job.spec.output.mode == OutputMode.PVC and job.spec.output.pvc is not None:
        volume_mounts = [
            client.V1VolumeMount(
                name=find_pvc_volume_name(pod, job.spec.output.pvc.claim_name),
                mount_path=DEFAULT_PVC_MOUNT_PATH,
            )
        ]

    return client.V1EphemeralContainer(
        name=container_name,
        image=tool_config.spec.image,
        image_pull_policy=IMAGE_PULL_POLICY,
        env=env_vars,
        security_context=build_security_context(
            tool_config.spec.security_context, pod, target_container
        ),
        resources=build_resource_requirements(tool_config.spec.resources),
        volume_mounts=volume_mounts,
        target_container_name=target_container.name if target_container else None,
    )
