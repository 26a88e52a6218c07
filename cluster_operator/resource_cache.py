"""In-memory cache of Kubernetes objects kept current by a list+watch loop."""

import copy
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .config import WATCH_ERROR_BACKOFF_SECONDS, WATCH_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], None]

HTTP_GONE = 410


def _object_key(obj: Dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"


def _resource_version(obj: Dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("resourceVersion", "")


class ResourceCache:
    """
    Thread-safe cache of one kind of Kubernetes object.

    Objects are stored in their JSON form, keyed by namespace/name. A
    background thread lists the objects, then watches for changes and keeps
    the cache current. Subscribers are notified of ADDED, MODIFIED and
    DELETED events.
    """

    def __init__(
        self,
        name: str,
        list_func: Callable[..., Any],
        list_kwargs: Optional[Dict[str, Any]] = None,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the cache.

        Args:
            name: Name used in log messages and for the watcher thread
            list_func: Kubernetes API list function (e.g. list_namespaced_secret)
            list_kwargs: Arguments passed to every list and watch call
            watch_timeout: Server-side watch timeout in seconds
            stop_event: Event that stops the watcher when set
        """
        self.name = name
        self._list_func = list_func
        self._list_kwargs = dict(list_kwargs or {})
        self._watch_timeout = watch_timeout
        self._stop_event = stop_event or threading.Event()

        self._objects: Dict[str, Dict[str, Any]] = {}
        self._handlers: List[EventHandler] = []
        self._lock = threading.RLock()
        self._synced = threading.Event()
        self._watch: Optional[watch.Watch] = None
        self._thread: Optional[threading.Thread] = None

    def _make_key(self, namespace: str, name: str) -> str:
        return f"{namespace}/{name}"

    def get(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """
        Get an object from the cache.

        Returns:
            A copy of the object, or None if it is not cached
        """
        key = self._make_key(namespace, name)
        with self._lock:
            obj = self._objects.get(key)
            return copy.deepcopy(obj) if obj is not None else None

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(obj) for obj in self._objects.values()]

    def subscribe(self, handler: EventHandler) -> None:
        """Register a handler called with (event_type, object) for every change."""
        with self._lock:
            self._handlers.append(handler)

    def _notify(self, event_type: str, obj: Dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event_type, copy.deepcopy(obj))
            except Exception as e:
                logger.error(f"Error in {self.name} event handler for {_object_key(obj)}: {e}")

    def handle_event(self, event_type: str, obj: Dict[str, Any]) -> None:
        """Apply one watch event to the cache and notify subscribers."""
        key = _object_key(obj)

        if event_type in ("ADDED", "MODIFIED"):
            with self._lock:
                existed = key in self._objects
                self._objects[key] = obj
            event_type = "MODIFIED" if existed else "ADDED"
        elif event_type == "DELETED":
            with self._lock:
                self._objects.pop(key, None)
        else:
            return

        logger.debug(f"{self.name} {event_type}: {key}")
        self._notify(event_type, obj)

    def replace(self, objects: List[Dict[str, Any]]) -> None:
        """Replace the cache contents with a fresh listing."""
        fresh = {_object_key(obj): obj for obj in objects}
        events = []

        with self._lock:
            for key, obj in fresh.items():
                previous = self._objects.get(key)
                if previous is None:
                    events.append(("ADDED", obj))
                elif _resource_version(previous) != _resource_version(obj):
                    events.append(("MODIFIED", obj))
            for key, obj in self._objects.items():
                if key not in fresh:
                    events.append(("DELETED", obj))
            self._objects = fresh

        for event_type, obj in events:
            self._notify(event_type, obj)

    def list_and_replace(self) -> str:
        """
        List all objects and replace the cache contents.

        Returns:
            The list's resourceVersion, to watch from
        """
        response = self._list_func(_preload_content=False, **self._list_kwargs)
        listing = json.loads(response.data)
        items = listing.get("items") or []
        self.replace(items)
        logger.info(f"Cached {len(items)} object(s) for {self.name}")
        return (listing.get("metadata") or {}).get("resourceVersion", "")

    def _watch_from(self, resource_version: str) -> str:
        self._watch = watch.Watch()
        stream = self._watch.stream(
            self._list_func,
            resource_version=resource_version,
            timeout_seconds=self._watch_timeout,
            **self._list_kwargs
        )
        for event in stream:
            if self._stop_event.is_set():
                break

            event_type = event["type"]
            obj = event["raw_object"]

            if event_type == "ERROR":
                code = obj.get("code")
                raise ApiException(status=code, reason=obj.get("message", ""))

            resource_version = _resource_version(obj) or resource_version
            if event_type != "BOOKMARK":
                self.handle_event(event_type, obj)
        return resource_version

    def run(self) -> None:
        """List, then watch for changes until stopped."""
        logger.info(f"Starting {self.name} watcher...")

        while not self._stop_event.is_set():
            try:
                resource_version = self.list_and_replace()
                self._synced.set()
                while not self._stop_event.is_set():
                    resource_version = self._watch_from(resource_version)
            except ApiException as e:
                if e.status == HTTP_GONE:
                    logger.info(f"{self.name} watch expired, relisting")
                    continue
                logger.error(f"{self.name} watch error: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in {self.name} watcher: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run,
            name=f"{self.name}-watcher",
            daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop_event.set()
        if self._watch is not None:
            self._watch.stop()

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)
