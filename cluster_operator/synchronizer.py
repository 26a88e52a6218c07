"""Synchronization of managed cluster secrets and records with the registry."""

import logging
from typing import Any, Dict, List, Optional

from .config import CRD_GROUP, CRD_KIND, CRD_VERSION, DEFAULT_NAMESPACE, KUBECONFIG_SECRET_KEY
from .errors import ObjectNotFound, SynchronizationError
from .registry import RemoteCluster
from .utils import (
    compare_ignore_target_empties,
    encode_secret_value,
    get_managed_cluster_labels,
    get_managed_cluster_secret_name,
)

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def _with_type_meta(obj: Dict[str, Any], api_version: str, kind: str) -> Dict[str, Any]:
    body = {"apiVersion": api_version, "kind": kind}
    body.update(obj)
    return body


class ClusterSynchronizer:
    """Creates or updates the secret and record for one remote cluster."""

    def __init__(self, writer, secret_cache, record_cache, namespace: str = DEFAULT_NAMESPACE):
        """
        Initialize the synchronizer.

        Args:
            writer: ManagedClusterClient (or compatible) issuing API writes
            secret_cache: Cached lookup of managed cluster secrets
            record_cache: Cached lookup of VerrazzanoManagedCluster objects
            namespace: Namespace holding the secrets and records
        """
        self.writer = writer
        self.secret_cache = secret_cache
        self.record_cache = record_cache
        self.namespace = namespace

    def new_secret(self, cluster: RemoteCluster) -> Dict[str, Any]:
        """Construct the kubeconfig secret for the given cluster."""
        return {
            "type": "Opaque",
            "metadata": {
                "name": get_managed_cluster_secret_name(cluster.name),
                "namespace": self.namespace,
                "labels": get_managed_cluster_labels(cluster.name),
            },
            "data": {
                KUBECONFIG_SECRET_KEY: encode_secret_value(cluster.kubeconfig_contents),
            },
        }

    def new_managed_cluster(self, cluster: RemoteCluster) -> Dict[str, Any]:
        """Construct a VerrazzanoManagedCluster from the given cluster."""
        return {
            "metadata": {
                "name": cluster.name,
                "namespace": self.namespace,
                "labels": get_managed_cluster_labels(cluster.name),
            },
            "spec": {
                "kubeconfigSecret": get_managed_cluster_secret_name(cluster.name),
                "serverAddress": cluster.server_address,
                "type": cluster.type,
            },
        }

    def sync_secret(self, cluster: RemoteCluster) -> str:
        """
        Create or update the kubeconfig secret for a cluster.

        Returns:
            CREATED, UPDATED or UNCHANGED
        """
        desired = self.new_secret(cluster)
        name = desired["metadata"]["name"]
        logger.debug(f"Processing VerrazzanoManagedCluster Secret '{name}' for cluster '{cluster.name}'")

        existing = self.secret_cache.get(self.namespace, name)
        if existing is None:
            logger.info(f"Creating VerrazzanoManagedCluster Secret '{name}' for cluster '{cluster.name}'")
            self.writer.create_secret(self.namespace, _with_type_meta(desired, "v1", "Secret"))
            return CREATED

        diffs = compare_ignore_target_empties(existing, desired)
        if not diffs:
            logger.debug(f"No need to update existing VerrazzanoManagedCluster Secret '{name}'")
            return UNCHANGED

        logger.info(f"Updating VerrazzanoManagedCluster Secret '{name}' for cluster '{cluster.name}'")
        logger.debug(f"Secret differences:\n{diffs}")
        desired["metadata"]["resourceVersion"] = existing.get("metadata", {}).get("resourceVersion")
        self.writer.update_secret(self.namespace, _with_type_meta(desired, "v1", "Secret"))
        return UPDATED

    def sync_record(self, cluster: RemoteCluster) -> str:
        """
        Create or update the VerrazzanoManagedCluster for a cluster.

        Returns:
            CREATED, UPDATED or UNCHANGED
        """
        desired = self.new_managed_cluster(cluster)
        name = desired["metadata"]["name"]
        api_version = f"{CRD_GROUP}/{CRD_VERSION}"
        logger.debug(f"Processing VerrazzanoManagedCluster CR '{name}' for cluster '{cluster.id}'")

        existing = self.record_cache.get(self.namespace, name)
        if existing is None:
            logger.info(f"Creating VerrazzanoManagedCluster CR '{name}'")
            self.writer.create_managed_cluster(self.namespace, _with_type_meta(desired, api_version, CRD_KIND))
            return CREATED

        diffs = compare_ignore_target_empties(existing, desired)
        if not diffs:
            logger.debug(f"No need to update existing VerrazzanoManagedCluster CR '{name}'")
            return UNCHANGED

        logger.info(f"Updating VerrazzanoManagedCluster CR '{name}'")
        logger.debug(f"Spec differences:\n{diffs}")
        desired["metadata"]["resourceVersion"] = existing.get("metadata", {}).get("resourceVersion")
        self.writer.update_managed_cluster(self.namespace, _with_type_meta(desired, api_version, CRD_KIND))
        return UPDATED

    def synchronize(self, cluster: RemoteCluster) -> Dict[str, str]:
        """
        Synchronize both the secret and the record for a cluster.

        Both are always attempted; a failure of one does not skip the other.

        Returns:
            Action taken per object, e.g. {"secret": "created", "record": "unchanged"}

        Raises:
            SynchronizationError: if either sub-operation failed
        """
        results: Dict[str, str] = {}
        failures: List[Exception] = []

        for label, sync in (("secret", self.sync_secret), ("record", self.sync_record)):
            try:
                results[label] = sync(cluster)
            except Exception as e:
                logger.error(
                    f"Failed to create/update VerrazzanoManagedCluster {label} for cluster "
                    f"'{cluster.name}' (id '{cluster.id}'): {e}"
                )
                failures.append(e)

        if failures:
            raise SynchronizationError(cluster.name, failures)
        return results

    def delete_secret(self, cluster_name: str) -> None:
        name = get_managed_cluster_secret_name(cluster_name)
        if self.secret_cache.get(self.namespace, name) is None:
            raise ObjectNotFound(f"Secret {self.namespace}/{name} no longer exists", kind="Secret", name=name)

        self.writer.delete_secret(self.namespace, name)
        logger.info(f"Deleted VerrazzanoManagedCluster Secret '{name}' for cluster '{cluster_name}'")

    def delete_record(self, cluster_name: str) -> None:
        if self.record_cache.get(self.namespace, cluster_name) is None:
            raise ObjectNotFound(
                f"VerrazzanoManagedCluster {self.namespace}/{cluster_name} no longer exists",
                kind=CRD_KIND,
                name=cluster_name,
            )

        self.writer.delete_managed_cluster(self.namespace, cluster_name)
        logger.info(f"Deleted VerrazzanoManagedCluster CR '{cluster_name}'")

    def delete_cluster(self, cluster_name: str, cluster_id: Optional[str] = None) -> None:
        """
        Delete the secret and record of a cluster no longer in the registry.

        Raises:
            SynchronizationError: if either deletion failed
        """
        failures: List[Exception] = []
        for delete in (self.delete_secret, self.delete_record):
            try:
                delete(cluster_name)
            except Exception as e:
                logger.error(f"Failed to delete objects for cluster '{cluster_name}' (id '{cluster_id or ''}'): {e}")
                failures.append(e)

        if failures:
            raise SynchronizationError(cluster_name, failures)
