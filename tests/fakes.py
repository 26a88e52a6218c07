"""In-memory stand-ins for the registry and the Kubernetes API."""

import copy
import itertools
import json

from cluster_operator.errors import ObjectConflict, ObjectNotFound, RegistryUnavailable

REGISTRY_CLUSTERS = {
    "data": [
        {"id": "c-ndvgb", "name": "foo-managed-1",
         "labels": {"type": "oke", "k8sApiHost": "130.35.130.66", "k8sApiPort": "6443"}},
        {"id": "c-r998z", "name": "foo-managed-2",
         "labels": {"type": "oke", "k8sApiHost": "147.154.97.197", "k8sApiPort": "6443"}},
        {"id": "local", "name": "local",
         "labels": {"type": "oke", "k8sApiHost": "147.154.96.26", "k8sApiPort": "6443"}},
    ]
}


class FakeRegistryTransport:
    """Serves canned registry responses without any network access."""

    def __init__(self, clusters=None):
        self.clusters = copy.deepcopy(clusters if clusters is not None else REGISTRY_CLUSTERS)
        self.calls = []

    def api_call(self, snapshot, api_path, method="GET", params=None, payload=""):
        self.calls.append((method, api_path, dict(params or {})))
        if snapshot.url == "bad-url":
            raise RegistryUnavailable(f"got {snapshot.url}")

        if api_path == "/v3/clusters" and method == "GET":
            return json.loads(json.dumps(self.clusters))
        if method == "POST" and (params or {}).get("action") == "generateKubeconfig":
            cluster_id = api_path.split("/")[-1]
            return {"config": f"generatedKubeConfigOutput:{cluster_id}"}
        raise RegistryUnavailable(f"unrecognized request: {api_path}")


class FakeCache:
    """Cached lookup backed by a dict, keyed by (namespace, name)."""

    def __init__(self, name="fake"):
        self.name = name
        self.objects = {}

    def get(self, namespace, name):
        obj = self.objects.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self):
        return [copy.deepcopy(obj) for obj in self.objects.values()]

    def put(self, obj):
        metadata = obj["metadata"]
        self.objects[(metadata["namespace"], metadata["name"])] = copy.deepcopy(obj)


class FakeWriter:
    """Records write calls and applies them to the fake caches like an API server would."""

    def __init__(self, secret_cache, record_cache):
        self.secret_cache = secret_cache
        self.record_cache = record_cache
        self.calls = []
        self.failures = {}
        self._versions = itertools.count(1)

    def fail(self, verb, kind, name, error):
        self.failures[(verb, kind, name)] = error

    def _check_failure(self, verb, kind, name):
        error = self.failures.get((verb, kind, name))
        if error is not None:
            raise error

    def _create(self, kind, cache, namespace, body):
        name = body["metadata"]["name"]
        self.calls.append(("create", kind, name))
        self._check_failure("create", kind, name)
        if cache.get(namespace, name) is not None:
            raise ObjectConflict(f"{kind} {name} already exists", kind=kind, name=name)
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        cache.put(stored)
        return stored

    def _update(self, kind, cache, namespace, body):
        name = body["metadata"]["name"]
        self.calls.append(("update", kind, name))
        self._check_failure("update", kind, name)
        existing = cache.get(namespace, name)
        if existing is None:
            raise ObjectNotFound(f"{kind} {name} not found", kind=kind, name=name)
        if body["metadata"].get("resourceVersion") != existing["metadata"]["resourceVersion"]:
            raise ObjectConflict(f"{kind} {name} was modified", kind=kind, name=name)
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        cache.put(stored)
        return stored

    def _delete(self, kind, cache, namespace, name):
        self.calls.append(("delete", kind, name))
        self._check_failure("delete", kind, name)
        if cache.objects.pop((namespace, name), None) is None:
            raise ObjectNotFound(f"{kind} {name} not found", kind=kind, name=name)

    def create_secret(self, namespace, body):
        return self._create("Secret", self.secret_cache, namespace, body)

    def update_secret(self, namespace, body):
        return self._update("Secret", self.secret_cache, namespace, body)

    def delete_secret(self, namespace, name):
        self._delete("Secret", self.secret_cache, namespace, name)

    def create_managed_cluster(self, namespace, body):
        return self._create("VerrazzanoManagedCluster", self.record_cache, namespace, body)

    def update_managed_cluster(self, namespace, body):
        return self._update("VerrazzanoManagedCluster", self.record_cache, namespace, body)

    def delete_managed_cluster(self, namespace, name):
        self._delete("VerrazzanoManagedCluster", self.record_cache, namespace, name)
