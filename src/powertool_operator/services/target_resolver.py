"""Resolution of a job's label selector to the pods it targets."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from powertool_operator.models.k8s import LabelSelector, LabelSelectorRequirement

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

    from powertool_operator.services.cluster import ClusterService

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_PREFIX_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


class InvalidSelectorError(ValueError):
    """Raised when a label selector cannot be compiled."""

    pass


def _validate_key(key: str) -> None:
    prefix, _, name = key.rpartition("/")
    if "/" in key and (not prefix or len(prefix) > 253 or not _PREFIX_PATTERN.match(prefix)):
        raise InvalidSelectorError(f"invalid label key {key!r}: bad prefix")
    if not name or len(name) > 63 or not _NAME_PATTERN.match(name):
        raise InvalidSelectorError(f"invalid label key {key!r}")


def _validate_value(value: str) -> None:
    if value and (len(value) > 63 or not _NAME_PATTERN.match(value)):
        raise InvalidSelectorError(f"invalid label value {value!r}")


def _compile_requirement(requirement: LabelSelectorRequirement) -> str:
    _validate_key(requirement.key)
    values = requirement.values or []
    operator = requirement.operator

    if operator in ("In", "NotIn"):
        if not values:
            raise InvalidSelectorError(
                f"values must be non-empty for operator {operator} on key {requirement.key!r}"
            )
        for value in values:
            _validate_value(value)
        keyword = "in" if operator == "In" else "notin"
        return f"{requirement.key} {keyword} ({','.join(sorted(values))})"

    if operator in ("Exists", "DoesNotExist"):
        if values:
            raise InvalidSelectorError(
                f"values must be empty for operator {operator} on key {requirement.key!r}"
            )
        return requirement.key if operator == "Exists" else f"!{requirement.key}"

    raise InvalidSelectorError(f"{operator!r} is not a valid label selector operator")


def compile_selector(selector: LabelSelector) -> str:
    """Compile a structured label selector into the API's selector string.

    An empty selector compiles to ``""``, which matches every pod.

    Raises:
        InvalidSelectorError: If a key, value or operator is invalid
    """
    clauses: list[str] = []

    for key, value in sorted((selector.match_labels or {}).items()):
        _validate_key(key)
        _validate_value(value)
        clauses.append(f"{key}={value}")

    for requirement in selector.match_expressions or []:
        clauses.append(_compile_requirement(requirement))

    return ",".join(clauses)


def resolve_target_pods(
    cluster: ClusterService, namespace: str, selector: LabelSelector | None
) -> list[V1Pod]:
    """List the pods a job targets.

    A missing selector matches nothing; the cluster is not queried. The
    selector is compiled before any request so that an invalid selector
    fails without partial results.

    Raises:
        InvalidSelectorError: If the selector cannot be compiled
    """
    if selector is None:
        logger.debug("No label selector in namespace %s, matching nothing", namespace)
        return []

    label_selector = compile_selector(selector)
    pods = cluster.list_pods(namespace, label_selector)
    logger.debug(
        "Selector %r matched %d pods in namespace %s", label_selector, len(pods), namespace
    )
    return pods
