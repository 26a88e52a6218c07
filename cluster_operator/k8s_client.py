"""Client for writing managed cluster secrets and VerrazzanoManagedCluster resources."""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from .errors import ObjectConflict, ObjectError, ObjectNotFound
from .resource_cache import ResourceCache


@contextmanager
def translate_api_errors(kind: str, namespace: str, name: str) -> Iterator[None]:
    """Map Kubernetes API exceptions onto the operator's error types."""
    try:
        yield
    except urllib3.exceptions.HTTPError as e:
        raise ObjectError(f"{kind} {namespace}/{name}: {e}", kind=kind, name=name) from e
    except ApiException as e:
        message = f"{kind} {namespace}/{name}: {e.status} {e.reason}"
        if e.status == 409:
            raise ObjectConflict(message, kind=kind, name=name) from e
        if e.status == 404:
            raise ObjectNotFound(message, kind=kind, name=name) from e
        raise ObjectError(message, kind=kind, name=name) from e


class ManagedClusterClient:
    """Create, update and delete calls for managed cluster objects."""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None, custom_api: Optional[client.CustomObjectsApi] = None):
        """Initialize the API clients."""
        self.core_v1 = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.core_v1.api_client.sanitize_for_serialization(obj)

    # Secrets

    def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """
        Read a secret directly from the API server.

        Returns:
            Secret object or None if not found
        """
        try:
            with translate_api_errors("Secret", namespace, name):
                return self._to_dict(self.core_v1.read_namespaced_secret(name=name, namespace=namespace))
        except ObjectNotFound:
            return None

    def create_secret(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        with translate_api_errors("Secret", namespace, name):
            return self._to_dict(self.core_v1.create_namespaced_secret(namespace=namespace, body=body))

    def update_secret(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        with translate_api_errors("Secret", namespace, name):
            return self._to_dict(
                self.core_v1.replace_namespaced_secret(name=name, namespace=namespace, body=body)
            )

    def delete_secret(self, namespace: str, name: str) -> None:
        with translate_api_errors("Secret", namespace, name):
            self.core_v1.delete_namespaced_secret(name=name, namespace=namespace)

    # VerrazzanoManagedClusters

    def create_managed_cluster(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        with translate_api_errors("VerrazzanoManagedCluster", namespace, name):
            return self.custom_api.create_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                body=body
            )

    def update_managed_cluster(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        with translate_api_errors("VerrazzanoManagedCluster", namespace, name):
            return self.custom_api.replace_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                name=name,
                body=body
            )

    def delete_managed_cluster(self, namespace: str, name: str) -> None:
        with translate_api_errors("VerrazzanoManagedCluster", namespace, name):
            self.custom_api.delete_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                name=name
            )

    # Caches

    def secret_cache(
        self,
        name: str,
        namespace: str,
        label_selector: str = "",
        field_selector: str = "",
        stop_event: Optional[threading.Event] = None,
    ) -> ResourceCache:
        """Build a cache of the secrets in a namespace."""
        list_kwargs: Dict[str, Any] = {"namespace": namespace}
        if label_selector:
            list_kwargs["label_selector"] = label_selector
        if field_selector:
            list_kwargs["field_selector"] = field_selector
        return ResourceCache(
            name,
            self.core_v1.list_namespaced_secret,
            list_kwargs=list_kwargs,
            stop_event=stop_event,
        )

    def managed_cluster_cache(self, namespace: str, stop_event: Optional[threading.Event] = None) -> ResourceCache:
        """Build a cache of the VerrazzanoManagedClusters in a namespace."""
        return ResourceCache(
            "managed-clusters",
            self.custom_api.list_namespaced_custom_object,
            list_kwargs={
                "group": CRD_GROUP,
                "version": CRD_VERSION,
                "namespace": namespace,
                "plural": CRD_PLURAL,
            },
            stop_event=stop_event,
        )
