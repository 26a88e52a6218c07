"""Command line entry point for the Managed Cluster Operator."""

import argparse
import logging
import os
import sys
import threading
from typing import List, Optional

from kubernetes import client, config

from .config import (
    CA_CERT_KEY,
    DEFAULT_NAMESPACE,
    POLL_INTERVAL_SECONDS,
    REGISTRY_NAMESPACE,
    REGISTRY_TLS_SECRET,
)
from .connection import ConnectionConfig
from .controller import ClusterOperatorController
from .errors import ConfigurationError, ObjectError, OperatorError
from .k8s_client import ManagedClusterClient
from .registry import HttpRegistryTransport, RegistryClient
from .synchronizer import ClusterSynchronizer
from .utils import decode_secret_value

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Managed Cluster Operator - Sync VerrazzanoManagedClusters with the cluster registry"
    )
    parser.add_argument(
        "--registry-url",
        default=os.environ.get("REGISTRY_URL", ""),
        help="Registry (Rancher) URL"
    )
    parser.add_argument(
        "--registry-host",
        default=os.environ.get("REGISTRY_HOST", ""),
        help="Optional host to connect to instead of the URL's host (for environments without external DNS)"
    )
    parser.add_argument(
        "--registry-username",
        default=os.environ.get("REGISTRY_USERNAME", ""),
        help="Registry username"
    )
    parser.add_argument(
        "--registry-password",
        default=os.environ.get("REGISTRY_PASSWORD", ""),
        help="Registry password"
    )
    parser.add_argument(
        "--kubeconfig",
        default=None,
        help="Path to a kubeconfig. Only required if out-of-cluster."
    )
    parser.add_argument(
        "--master",
        default=None,
        help="The address of the Kubernetes API server. Overrides any value in kubeconfig. Only required if out-of-cluster."
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=POLL_INTERVAL_SECONDS,
        help=f"Seconds between registry polls (default: {POLL_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--prune-removed-clusters",
        action="store_true",
        help="Delete managed cluster records for clusters the registry no longer reports"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def load_kube_config(args: argparse.Namespace) -> None:
    """Load the Kubernetes client configuration, applying the --master override."""
    if args.in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster configuration")
    else:
        config.load_kube_config(config_file=args.kubeconfig)
        logger.info("Loaded kubeconfig")

    if args.master:
        configuration = client.Configuration.get_default_copy()
        configuration.host = args.master
        client.Configuration.set_default(configuration)
        logger.info(f"Using Kubernetes API server {args.master}")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT
    )


def get_registry_ca_cert(k8s_client: ManagedClusterClient) -> bytes:
    """Get ca.crt from the registry's TLS ingress secret, or b"" if unavailable."""
    try:
        secret = k8s_client.get_secret(REGISTRY_NAMESPACE, REGISTRY_TLS_SECRET)
    except ObjectError as e:
        logger.warning(f"Error getting secret {REGISTRY_NAMESPACE}/{REGISTRY_TLS_SECRET} in management cluster: {e}")
        return b""

    if secret is None:
        logger.warning(f"Secret {REGISTRY_NAMESPACE}/{REGISTRY_TLS_SECRET} not found in management cluster")
        return b""
    return decode_secret_value((secret.get("data") or {}).get(CA_CERT_KEY))


def build_controller(args: argparse.Namespace, stop_event: threading.Event) -> ClusterOperatorController:
    """
    Wire up the controller from parsed arguments.

    Raises:
        ConfigurationError: if the registry settings are unusable
    """
    # Validate before touching the cluster
    connection_config = ConnectionConfig.from_settings(
        args.registry_url,
        args.registry_username,
        args.registry_password,
        host=args.registry_host,
    )

    k8s_client = ManagedClusterClient()
    connection_config.replace_ca_data(get_registry_ca_cert(k8s_client))

    secret_cache = k8s_client.secret_cache(
        "managed-cluster-secrets",
        DEFAULT_NAMESPACE,
        stop_event=stop_event,
    )
    record_cache = k8s_client.managed_cluster_cache(DEFAULT_NAMESPACE, stop_event=stop_event)
    ca_secret_cache = k8s_client.secret_cache(
        "registry-ca-secret",
        REGISTRY_NAMESPACE,
        field_selector=f"metadata.name={REGISTRY_TLS_SECRET}",
        stop_event=stop_event,
    )

    registry_client = RegistryClient(
        connection_config,
        transport=HttpRegistryTransport(stop_event=stop_event),
    )
    synchronizer = ClusterSynchronizer(k8s_client, secret_cache, record_cache)

    return ClusterOperatorController(
        registry_client,
        synchronizer,
        connection_config,
        caches=[secret_cache, record_cache],
        ca_secret_cache=ca_secret_cache,
        poll_interval=args.poll_interval,
        prune_removed_clusters=args.prune_removed_clusters,
        stop_event=stop_event,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.verbose)

    # Load Kubernetes configuration
    try:
        load_kube_config(args)
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    stop_event = threading.Event()
    try:
        controller = build_controller(args, stop_event)
    except ConfigurationError as e:
        logger.error(f"Invalid registry configuration: {e}")
        sys.exit(1)

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
        logger.info("Controller stopped")
        sys.exit(0)
    except OperatorError as e:
        logger.error(f"Controller error: {e}")
        sys.exit(1)
