"""Main controller logic for the Managed Cluster Operator."""

import logging
import threading
from typing import Any, Dict, List, Optional

from .config import (
    CA_CERT_KEY,
    CACHE_SYNC_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS,
    REGISTRY_NAMESPACE,
    REGISTRY_TLS_SECRET,
    VERRAZZANO_CLUSTER_LABEL,
)
from .connection import ConnectionConfig
from .errors import OperatorError, RegistryError
from .registry import RegistryClient, RemoteCluster
from .synchronizer import ClusterSynchronizer
from .utils import decode_secret_value

logger = logging.getLogger(__name__)


class ClusterOperatorController:
    """
    Polls the cluster registry and keeps the local managed cluster secrets
    and VerrazzanoManagedCluster records in step with it.
    """

    def __init__(
        self,
        registry_client: RegistryClient,
        synchronizer: ClusterSynchronizer,
        connection_config: ConnectionConfig,
        caches: Optional[List[Any]] = None,
        ca_secret_cache: Optional[Any] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        prune_removed_clusters: bool = False,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the controller.

        Args:
            registry_client: Client listing the registry's clusters
            synchronizer: Writes managed cluster secrets and records
            connection_config: Shared registry connection settings
            caches: Caches backing the synchronizer, started by run()
            ca_secret_cache: Cache watching the registry's TLS ingress secret
            poll_interval: Seconds between registry polls
            prune_removed_clusters: Delete records of clusters the registry no longer reports
            stop_event: Process-wide shutdown event
        """
        self.registry_client = registry_client
        self.synchronizer = synchronizer
        self.connection_config = connection_config
        self.caches = list(caches or [])
        self.ca_secret_cache = ca_secret_cache
        self.poll_interval = poll_interval
        self.prune_removed_clusters = prune_removed_clusters

        self._stop_event = stop_event or threading.Event()
        self._tick_lock = threading.Lock()
        self.state = "Idle"

    def handle_ca_secret_event(self, event_type: str, secret: Dict[str, Any]) -> bool:
        """
        Reload the registry CA certificate when its secret changes.

        Returns:
            True if the connection config was updated
        """
        if event_type not in ("ADDED", "MODIFIED"):
            return False

        metadata = secret.get("metadata", {})
        if metadata.get("name") != REGISTRY_TLS_SECRET or metadata.get("namespace") != REGISTRY_NAMESPACE:
            return False

        ca_data = decode_secret_value((secret.get("data") or {}).get(CA_CERT_KEY))
        if self.connection_config.replace_ca_data(ca_data):
            logger.info(f"Reloaded secret {REGISTRY_NAMESPACE}/{REGISTRY_TLS_SECRET}")
            return True
        return False

    def sync_cluster(self, cluster: RemoteCluster) -> bool:
        """Synchronize one cluster, logging rather than raising on failure."""
        logger.debug(f"Syncing Verrazzano Managed Cluster: Id='{cluster.id}', Name='{cluster.name}'")
        try:
            self.synchronizer.synchronize(cluster)
        except Exception as e:
            logger.error(f"Failed to sync Verrazzano Managed Cluster: Id='{cluster.id}', Name='{cluster.name}': {e}")
            return False
        logger.debug(f"Successfully synced Verrazzano Managed Cluster: Id='{cluster.id}', Name='{cluster.name}'")
        return True

    def prune(self, clusters: List[RemoteCluster]) -> List[str]:
        """
        Delete records whose cluster the registry no longer reports.

        Returns:
            Names of the clusters that were removed
        """
        reported = {cluster.name for cluster in clusters}
        removed = []

        for record in self.synchronizer.record_cache.list():
            labels = record.get("metadata", {}).get("labels") or {}
            name = labels.get(VERRAZZANO_CLUSTER_LABEL)
            if not name or name in reported:
                continue

            logger.info(f"Cluster '{name}' is no longer reported by the registry, removing it")
            try:
                self.synchronizer.delete_cluster(name)
            except Exception as e:
                logger.error(f"Failed to remove cluster '{name}': {e}")
                continue
            removed.append(name)

        return removed

    def poll_once(self) -> bool:
        """
        Run a single poll of the registry.

        Returns:
            False if the tick was skipped because a previous one is still running
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous registry poll still running, skipping this one")
            return False

        try:
            self.state = "Polling"
            try:
                clusters = self.registry_client.list_clusters()
            except RegistryError as e:
                logger.error(f"Failed to get Rancher managed clusters: {e}")
                return True

            self.state = "Synchronizing"
            for cluster in clusters:
                if self._stop_event.is_set():
                    break
                self.sync_cluster(cluster)

            if self.prune_removed_clusters and not self._stop_event.is_set():
                self.prune(clusters)

            logger.debug(f"Successfully synced Rancher ({len(clusters)} clusters)")
            return True
        finally:
            self.state = "Stopped" if self._stop_event.is_set() else "Idle"
            self._tick_lock.release()

    def poll_registry(self) -> None:
        """Poll the registry every poll_interval seconds until stopped."""
        logger.info(f"Starting registry poller (interval: {self.poll_interval}s)")

        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Unexpected error in registry poller: {e}")

            # Check available clusters every predefined interval
            self._stop_event.wait(self.poll_interval)

        self.state = "Stopped"

    def run(self) -> None:
        """Run the controller."""
        logger.info("=" * 60)
        logger.info("Starting Managed Cluster Operator")
        logger.info("=" * 60)
        logger.info(f"Registry: {self.connection_config.url}")
        logger.info(f"Prune removed clusters: {self.prune_removed_clusters}")

        if self.ca_secret_cache is not None:
            self.ca_secret_cache.subscribe(self.handle_ca_secret_event)

        caches = self.caches + ([self.ca_secret_cache] if self.ca_secret_cache is not None else [])
        for cache in caches:
            cache.start()

        # Wait for the caches to be synced before polling
        logger.info("Waiting for informer caches to sync")
        for cache in caches:
            if not cache.wait_for_sync(CACHE_SYNC_TIMEOUT_SECONDS):
                self.stop()
                raise OperatorError(f"Failed to wait for cache {cache.name} to sync")

        poll_thread = threading.Thread(
            target=self.poll_registry,
            name="registry-poller",
            daemon=True
        )
        poll_thread.start()

        logger.info("Controller is running. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while not self._stop_event.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Shutdown requested...")
            self.stop()

        poll_thread.join(timeout=self.poll_interval)

    def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping controller...")
        self._stop_event.set()
        for cache in self.caches + ([self.ca_secret_cache] if self.ca_secret_cache is not None else []):
            cache.stop()
