"""Reconciliation engine for PowerTool jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NoReturn

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.core.telemetry import get_tracer, reconcile_span, record_reconcile_outcome
from powertool_operator.models.common import OutputMode
from powertool_operator.models.powertool import PowerTool
from powertool_operator.services.cluster import (
    ClusterService,
    EphemeralContainerError,
    TokenRequestError,
    get_cluster_service,
)
from powertool_operator.services.conflicts import check_for_conflicts
from powertool_operator.services.container_env import (
    InvalidDurationError,
    build_ephemeral_container,
    container_name_for,
    parse_duration,
)
from powertool_operator.services.lifecycle import PodAction, apply_decision, decide_pod_action
from powertool_operator.services.status import (
    initialize_status,
    mark_conflicted,
    mark_failed,
    project_progress,
    requeue_interval,
)
from powertool_operator.services.target_resolver import (
    InvalidSelectorError,
    resolve_target_pods,
)
from powertool_operator.services.token_issuer import ServiceAccountTokenIssuer, TokenIssuer
from powertool_operator.services.tool_registry import (
    ClusterToolRegistry,
    NamespaceNotAllowedError,
    ToolConfigNotFoundError,
    ToolRegistry,
    validate_namespace_access,
)

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

    from powertool_operator.models.tool_config import PowerToolConfig

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Errors that fail a pass after being recorded on the job's status
FATAL_ERRORS = (ToolConfigNotFoundError, NamespaceNotAllowedError, InvalidSelectorError)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    Attributes:
        requeue_after: Seconds until the job should be reconciled again, or
            None if it should only be reconciled on the next change
        phase: Phase the job ended the pass in
        created: Pods that received a new diagnostic container this pass
        failed: Pods whose container creation failed this pass
        found: False when the job no longer exists
    """

    requeue_after: float | None = None
    phase: str | None = None
    created: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    found: bool = True


class PowerToolReconciler:
    """Drives one PowerTool job toward its desired state per invocation.

    Each pass reads the job and its target pods fresh, skips pods owned by
    another active job, attaches at most one diagnostic container per pod,
    and writes the projected status back once.

    Example:
        ```python
        reconciler = PowerToolReconciler()
        result = reconciler.reconcile("default", "profile-nginx")
        print(f"Next pass in {result.requeue_after}s")
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cluster: ClusterService | None = None,
        tool_registry: ToolRegistry | None = None,
        token_issuer: TokenIssuer | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            settings: Operator settings (uses default if not provided)
            cluster: ClusterService instance (uses global if not provided)
            tool_registry: Registry lookup (cluster-backed if not provided)
            token_issuer: Collector token issuer (service-account backed if not provided)
        """
        self.settings = settings or get_settings()
        self._cluster = cluster
        self._tool_registry = tool_registry
        self._token_issuer = token_issuer

    @property
    def cluster(self) -> ClusterService:
        """Get the ClusterService, using global instance if not set."""
        if self._cluster is None:
            self._cluster = get_cluster_service()
        return self._cluster

    @property
    def tool_registry(self) -> ToolRegistry:
        """Get the tool registry, backed by the cluster if not set."""
        if self._tool_registry is None:
            self._tool_registry = ClusterToolRegistry(self.cluster, settings=self.settings)
        return self._tool_registry

    @property
    def token_issuer(self) -> TokenIssuer:
        """Get the token issuer, backed by the cluster if not set."""
        if self._token_issuer is None:
            self._token_issuer = ServiceAccountTokenIssuer(self.cluster, settings=self.settings)
        return self._token_issuer

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation pass for a job.

        Args:
            namespace: Job namespace
            name: Job name

        Returns:
            ReconcileResult with the delay until the next pass

        Raises:
            ToolConfigNotFoundError: If the job's tool has no registry entry
            NamespaceNotAllowedError: If the tool is not allowed in the namespace
            InvalidSelectorError: If the job's label selector is invalid
            StatusConflictError: If the job was modified during the pass
        """
        with reconcile_span(tracer, namespace, name) as span:
            job = self.cluster.get_powertool(namespace, name)
            if job is None:
                logger.debug("PowerTool %s/%s not found, assuming deleted", namespace, name)
                return ReconcileResult(found=False)

            logger.info("Reconciling PowerTool %s/%s", namespace, name)

            if job.metadata.deletion_timestamp is not None:
                return self.handle_deletion(job)

            if job.status.phase is None:
                initialize_status(job.status)
                job = self.cluster.update_powertool_status(job)

            result = self._reconcile_job(job)
            record_reconcile_outcome(span, result.phase, len(result.created), len(result.failed))
            return result

    def _reconcile_job(self, job: PowerTool) -> ReconcileResult:
        try:
            tool_config = self.tool_registry.get(job.spec.tool.name, job.namespace)
        except ToolConfigNotFoundError as e:
            self._fail(job, f"Tool configuration error: {e}", e)

        try:
            validate_namespace_access(tool_config, job.namespace)
        except NamespaceNotAllowedError as e:
            self._fail(job, f"Namespace access denied: {e}", e)

        try:
            pods = resolve_target_pods(self.cluster, job.namespace, job.spec.targets.label_selector)
        except InvalidSelectorError as e:
            self._fail(job, f"Invalid label selector: {e}", e)

        selected_pods = len(pods)
        job.status.selected_pods = selected_pods

        conflict = check_for_conflicts(job, pods, self.cluster.list_powertools(job.namespace))
        if conflict.conflicted:
            if job.is_terminal:
                # Finished jobs keep their phase but must not touch the claimed pod
                logger.info(
                    "PowerTool %s/%s is %s; skipping pods this pass: %s",
                    job.namespace,
                    job.name,
                    job.status.phase.value,
                    conflict.reason,
                )
                job.status.completed_pods = max(
                    selected_pods - len(job.status.active_pods or {}), 0
                )
                job = self.cluster.update_powertool_status(job)
                return ReconcileResult(
                    requeue_after=requeue_interval(job.status.phase, self.settings),
                    phase=job.status.phase.value,
                )

            logger.info("PowerTool %s/%s conflicted: %s", job.namespace, job.name, conflict.reason)
            mark_conflicted(job.status, conflict.reason)
            self.cluster.update_powertool_status(job)
            return ReconcileResult(
                requeue_after=self.settings.conflict_requeue_seconds,
                phase=job.status.phase.value,
            )

        result = ReconcileResult()
        active_pods = self._track_containers(job, tool_config, pods, result)

        project_progress(job.status, selected_pods, active_pods)
        job.status.last_error = None
        job = self.cluster.update_powertool_status(job)

        result.phase = job.status.phase.value if job.status.phase else None
        result.requeue_after = requeue_interval(job.status.phase, self.settings)
        return result

    def _track_containers(
        self,
        job: PowerTool,
        tool_config: PowerToolConfig,
        pods: list[V1Pod],
        result: ReconcileResult,
    ) -> dict[str, str]:
        """Apply per-pod lifecycle decisions to a copy of the tracked containers."""
        container_name = container_name_for(job)
        pod_names = {pod.metadata.name for pod in pods}

        # Entries for pods that no longer match are dropped
        snapshot = {
            pod_name: tracked
            for pod_name, tracked in (job.status.active_pods or {}).items()
            if pod_name in pod_names
        }
        active_pods = dict(snapshot)

        for pod in pods:
            decision = decide_pod_action(snapshot, pod, container_name)
            if decision.action != PodAction.CREATE:
                if decision.action == PodAction.RELEASE:
                    logger.info(
                        "Container %s on pod %s finished", decision.container_name, pod.metadata.name
                    )
                apply_decision(active_pods, decision)
                continue

            if self._create_container(job, tool_config, pod, container_name):
                active_pods[pod.metadata.name] = container_name
                result.created.append(pod.metadata.name)
            else:
                result.failed.append(pod.metadata.name)

        return active_pods

    def _create_container(
        self,
        job: PowerTool,
        tool_config: PowerToolConfig,
        pod: V1Pod,
        container_name: str,
    ) -> bool:
        """Attach a diagnostic container to a pod. Failures are logged, not raised."""
        try:
            collector_token = None
            if job.spec.output.mode == OutputMode.COLLECTOR and job.spec.output.collector:
                collection_seconds = parse_duration(job.spec.tool.duration)
                collector_token = self.token_issuer.issue(job.name, collection_seconds)

            container = build_ephemeral_container(
                job, tool_config, pod, container_name, collector_token=collector_token
            )
            self.cluster.add_ephemeral_container(pod, container)
        except (EphemeralContainerError, TokenRequestError, InvalidDurationError) as e:
            logger.error(
                "Failed to create ephemeral container for pod %s/%s: %s",
                pod.metadata.namespace,
                pod.metadata.name,
                e,
            )
            return False

        logger.info(
            "Added ephemeral container %s to pod %s (image %s)",
            container_name,
            pod.metadata.name,
            tool_config.spec.image,
        )
        return True

    def _fail(self, job: PowerTool, message: str, error: Exception) -> NoReturn:
        """Record a fatal error on the job's status, then re-raise it."""
        logger.error("PowerTool %s/%s failed: %s", job.namespace, job.name, message)
        mark_failed(job.status, message)
        try:
            self.cluster.update_powertool_status(job)
        except Exception as update_error:
            logger.error(
                "Failed to update PowerTool %s/%s status: %s", job.namespace, job.name, update_error
            )
        raise error

    def handle_deletion(self, job: PowerTool) -> ReconcileResult:
        """Handle a job that is being deleted.

        Ephemeral containers cannot be removed from a running pod; they end
        when their tool exits or when the pod is deleted. There is nothing to
        clean up, so the finalizer (if any) is left in place.
        """
        finalizers = job.metadata.finalizers or []
        if self.settings.finalizer_name not in finalizers:
            return ReconcileResult()

        logger.info(
            "PowerTool %s/%s is being deleted; %d diagnostic containers are left to finish",
            job.namespace,
            job.name,
            len(job.status.active_pods or {}),
        )
        return ReconcileResult()


# Global singleton instance
_reconciler: PowerToolReconciler | None = None


def get_reconciler() -> PowerToolReconciler:
    """Get the global PowerToolReconciler instance."""
    global _reconciler
    if _reconciler is None:
        _reconciler = PowerToolReconciler()
    return _reconciler
