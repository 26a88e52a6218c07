"""Utility functions for naming, JSON lookup and object comparison."""

import base64
import os
from typing import Any, Dict, List, Optional

from .config import (
    K8S_APP_LABEL,
    MANAGED_CLUSTER_PREFIX,
    PROXY_ENV_VARS,
    VERRAZZANO_CLUSTER_LABEL,
    VERRAZZANO_GROUP,
)


def get_managed_cluster_secret_name(cluster_name: str) -> str:
    """
    Name of the kubeconfig secret for a managed cluster.

    Examples:
        "local" -> "verrazzano-managed-cluster-local"
    """
    return f"{MANAGED_CLUSTER_PREFIX}-{cluster_name}"


def get_managed_cluster_labels(cluster_name: str) -> Dict[str, str]:
    """Labels identifying an object as fleet-managed."""
    return {
        K8S_APP_LABEL: VERRAZZANO_GROUP,
        VERRAZZANO_CLUSTER_LABEL: cluster_name,
    }


def get_path(document: Any, path: str, default: Any = None) -> Any:
    """
    Look up a dotted path in a nested JSON document.

    Returns ``default`` when any segment is missing, when an intermediate
    value is not an object, or when the value found is null.

    Examples:
        get_path({"labels": {"type": "oke"}}, "labels.type") -> "oke"
        get_path({"labels": {}}, "labels.type", "") -> ""
    """
    node = document
    for segment in path.split("."):
        if not isinstance(node, dict) or segment not in node:
            return default
        node = node[segment]
    if node is None:
        return default
    return node


def get_string(document: Any, path: str, default: str = "") -> str:
    """Look up a dotted path and coerce scalar values to a string."""
    value = get_path(document, path, default)
    if isinstance(value, (dict, list)):
        return default
    return str(value)


def is_empty(value: Any) -> bool:
    """True for values the desired side deliberately leaves unset."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, dict, list, tuple)):
        return len(value) == 0
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _compare(existing: Any, desired: Any, path: str, diffs: List[str]) -> None:
    if is_empty(desired):
        return

    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            diffs.append(f"{path or '.'}: {existing!r} -> {desired!r}")
            return
        for key, value in desired.items():
            child = f"{path}.{key}" if path else key
            _compare(existing.get(key), value, child, diffs)
        return

    if isinstance(desired, (list, tuple)):
        if not isinstance(existing, (list, tuple)) or len(existing) != len(desired):
            diffs.append(f"{path}: {existing!r} -> {desired!r}")
            return
        for index, (old, new) in enumerate(zip(existing, desired)):
            _compare(old, new, f"{path}[{index}]", diffs)
        return

    if existing != desired:
        diffs.append(f"{path}: {existing!r} -> {desired!r}")


def compare_ignore_target_empties(existing: Any, desired: Any) -> str:
    """
    Structural diff of ``existing`` against ``desired``.

    Fields left empty or zero on the desired side are ignored so that fields
    the operator does not manage are never clobbered.

    Returns:
        One line per difference, or "" when there is nothing to change
    """
    diffs: List[str] = []
    _compare(existing, desired, "", diffs)
    return "\n".join(diffs)


def get_proxy_url() -> str:
    """Retrieve the proxy URL from the environment, HTTPS variants first."""
    for name in PROXY_ENV_VARS:
        proxy_url = os.environ.get(name, "")
        if proxy_url:
            return proxy_url
    return ""


def encode_secret_value(value: str) -> str:
    """Encode a string the way the API server stores secret data."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def decode_secret_value(value: Optional[str]) -> bytes:
    """Decode a base64 secret data value, treating missing as empty."""
    if not value:
        return b""
    return base64.b64decode(value)
