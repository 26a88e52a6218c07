"""Client for the cluster registry (Rancher) API."""

import json
import logging
import ssl
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter

from .backoff import DEFAULT_RETRY, RetryPolicy, retry
from .config import (
    CLUSTERS_API_PATH,
    GENERATE_KUBECONFIG_ACTION,
    REQUEST_TIMEOUT_SECONDS,
    RESPONSE_HEADER_TIMEOUT_SECONDS,
    TLS_HANDSHAKE_TIMEOUT_SECONDS,
)
from .connection import ConnectionConfig, ConnectionSnapshot
from .errors import RegistryProtocolError, RegistryUnavailable
from .utils import get_path, get_proxy_url, get_string

# Rancher response json paths
JSON_DATA_PATH = "data"
JSON_ID_PATH = "id"
JSON_NAME_PATH = "name"
JSON_K8S_API_HOST_PATH = "labels.k8sApiHost"
JSON_K8S_API_PORT_PATH = "labels.k8sApiPort"
JSON_TYPE_PATH = "labels.type"
JSON_CONFIG_PATH = "config"

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class RemoteCluster:
    """A cluster as reported by the registry for one poll."""
    id: str
    name: str
    server_address: str
    type: str
    kubeconfig_contents: str
    prometheus_url: str = ""


@dataclass(frozen=True)
class HttpTimeouts:
    """Fixed per-call timeouts, in seconds."""
    connect: float = TLS_HANDSHAKE_TIMEOUT_SECONDS
    read: float = RESPONSE_HEADER_TIMEOUT_SECONDS
    total: float = REQUEST_TIMEOUT_SECONDS


class RegistryTransport(Protocol):
    """Performs one registry API call and returns the parsed JSON object."""

    def api_call(
        self,
        snapshot: ConnectionSnapshot,
        api_path: str,
        method: str = "GET",
        params: Optional[Mapping[str, str]] = None,
        payload: str = "",
    ) -> Dict[str, Any]:
        ...


class HostNameValidationAdapter(HTTPAdapter):
    """
    Adapter trusting an explicit CA and validating a reference host name.

    Used when the connection goes to an internal address: SNI and the
    certificate check still use the registry's public host name.
    """

    def __init__(self, host_name: str = "", ca_data: bytes = b""):
        self._reference_host_name = host_name
        self._ssl_context = None
        if ca_data:
            try:
                self._ssl_context = ssl.create_default_context(cadata=ca_data.decode("ascii"))
            except (ssl.SSLError, ValueError) as e:
                raise RegistryUnavailable(f"Invalid registry CA certificate: {e}") from e
        super().__init__()

    def _tls_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if self._ssl_context is not None:
            kwargs["ssl_context"] = self._ssl_context
        if self._reference_host_name:
            kwargs["server_hostname"] = self._reference_host_name
            kwargs["assert_hostname"] = self._reference_host_name
        return kwargs

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs.update(self._tls_kwargs())
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        proxy_kwargs.update(self._tls_kwargs())
        return super().proxy_manager_for(proxy, **proxy_kwargs)

    def cert_verify(self, conn, url, verify, cert):
        super().cert_verify(conn, url, verify, cert)
        if self._ssl_context is not None:
            # only the registry CA is trusted
            conn.ca_certs = None
            conn.ca_cert_dir = None
        if self._reference_host_name:
            conn.assert_hostname = self._reference_host_name


def _resolve_target(url: str, host_override: str) -> Tuple[str, str, str]:
    """
    Work out where to connect for a request URL.

    Returns:
        Tuple of (request_url, host_header, tls_host_name); the last two are
        empty when no override applies
    """
    if not host_override:
        return url, "", ""

    parsed = urlsplit(url)
    netloc = host_override
    if ":" not in host_override and parsed.port:
        netloc = f"{host_override}:{parsed.port}"
    request_url = urlunsplit((parsed.scheme, netloc, parsed.path, parsed.query, parsed.fragment))
    return request_url, parsed.netloc, parsed.hostname or ""


def parse_json_object(body: str) -> Dict[str, Any]:
    """Parse a response body that must hold a JSON object."""
    try:
        document = json.loads(body)
    except (TypeError, ValueError) as e:
        raise RegistryProtocolError(f"Unable to parse response body to json: {body[:200]!r}") from e
    if not isinstance(document, dict):
        raise RegistryProtocolError(f"Expected a JSON object but got {type(document).__name__}")
    return document


class HttpRegistryTransport:
    """Registry transport over HTTPS with bounded retries."""

    def __init__(
        self,
        retry_policy: RetryPolicy = DEFAULT_RETRY,
        timeouts: HttpTimeouts = HttpTimeouts(),
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the transport.

        Args:
            retry_policy: Backoff applied to every call
            timeouts: Connect, header and overall request timeouts
            stop_event: When set, pending retries are abandoned
            logger: Logger to use instead of the module logger
            sleep: Wait function used when no stop_event is given
        """
        self.retry_policy = retry_policy
        self.timeouts = timeouts
        self.stop_event = stop_event
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    def _new_session(self, snapshot: ConnectionSnapshot, tls_host_name: str) -> requests.Session:
        session = requests.Session()
        # proxies come from get_proxy_url only
        session.trust_env = False
        adapter = HostNameValidationAdapter(tls_host_name, snapshot.ca_data)
        session.mount("https://", adapter)
        return session

    def _read_body(self, response: requests.Response, deadline: float) -> str:
        chunks = []
        for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise RegistryUnavailable(
                    f"Request exceeded overall timeout of {self.timeouts.total}s"
                )
            chunks.append(chunk)
        return b"".join(chunks).decode("utf-8", errors="replace")

    def send_request(
        self,
        session: requests.Session,
        snapshot: ConnectionSnapshot,
        method: str,
        api_path: str,
        params: Optional[Mapping[str, str]] = None,
        payload: str = "",
    ) -> Tuple[int, str]:
        """
        Send a single request.

        Returns:
            Tuple of (status_code, body)

        Raises:
            RegistryUnavailable: on any transport failure
        """
        request_url, host_header, _ = _resolve_target(snapshot.url + api_path, snapshot.host_override)

        headers = {"Accept": "*/*", "Content-Type": "application/json"}
        if host_header:
            headers["Host"] = host_header

        auth = None
        if snapshot.username and snapshot.password:
            auth = (snapshot.username, snapshot.password)

        proxy_url = get_proxy_url()
        proxies = {"http": proxy_url, "https": proxy_url} if proxy_url else {}

        deadline = time.monotonic() + self.timeouts.total
        try:
            response = session.request(
                method,
                request_url,
                params=dict(params or {}),
                data=payload or None,
                headers=headers,
                auth=auth,
                proxies=proxies,
                timeout=(self.timeouts.connect, self.timeouts.read),
                stream=True,
            )
            try:
                body = self._read_body(response, deadline)
            finally:
                response.close()
        except requests.RequestException as e:
            raise RegistryUnavailable(f"{method} {snapshot.url + api_path} failed: {e}") from e

        return response.status_code, body

    def api_call(
        self,
        snapshot: ConnectionSnapshot,
        api_path: str,
        method: str = "GET",
        params: Optional[Mapping[str, str]] = None,
        payload: str = "",
    ) -> Dict[str, Any]:
        """Generic registry API call returning a JSON object."""
        self.logger.debug(f"[APICall] [{method}] url:'{snapshot.url + api_path}'")

        _, _, tls_host_name = _resolve_target(snapshot.url + api_path, snapshot.host_override)
        session = self._new_session(snapshot, tls_host_name)

        def attempt() -> str:
            status, body = self.send_request(session, snapshot, method, api_path, params, payload)
            if status != 200:
                raise RegistryUnavailable(
                    f"Expected response code 200 from {method} {api_path} but got {status}",
                    status_code=status,
                )
            return body

        started = time.monotonic()
        try:
            body = retry(self.retry_policy, attempt, stop_event=self.stop_event, sleep=self._sleep)
        finally:
            session.close()
            self.logger.debug(f"Wait time: {time.monotonic() - started:.2f}s")

        return parse_json_object(body)


class RegistryClient:
    """Lists the clusters known to the registry."""

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Optional[RegistryTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.transport = transport or HttpRegistryTransport()
        self.logger = logger or logging.getLogger(__name__)

    def generate_kubeconfig(self, cluster_id: str, snapshot: Optional[ConnectionSnapshot] = None) -> str:
        """Ask the registry to generate a kubeconfig for a cluster."""
        snapshot = snapshot or self.config.snapshot()
        api_path = f"{CLUSTERS_API_PATH}/{quote(cluster_id, safe='')}"
        document = self.transport.api_call(
            snapshot,
            api_path,
            "POST",
            params={"action": GENERATE_KUBECONFIG_ACTION},
        )
        kubeconfig = get_path(document, JSON_CONFIG_PATH)
        if not isinstance(kubeconfig, str):
            raise RegistryProtocolError(f"No kubeconfig returned for cluster '{cluster_id}'")
        return kubeconfig

    def list_clusters(self) -> List[RemoteCluster]:
        """
        Fetch every cluster from the registry, with its kubeconfig.

        Clusters are returned in registry order. Any failure aborts the whole
        listing; no partial result is returned.

        Raises:
            RegistryUnavailable: transport failure or non-200 status
            RegistryProtocolError: malformed response
        """
        snapshot = self.config.snapshot()
        document = self.transport.api_call(snapshot, CLUSTERS_API_PATH, "GET")

        entries = get_path(document, JSON_DATA_PATH)
        if not isinstance(entries, list):
            raise RegistryProtocolError(f"Response has no '{JSON_DATA_PATH}' array")

        clusters = []
        for entry in entries:
            cluster_id = get_path(entry, JSON_ID_PATH)
            name = get_path(entry, JSON_NAME_PATH)
            if not isinstance(cluster_id, str) or not isinstance(name, str):
                raise RegistryProtocolError(f"Cluster entry without id/name: {entry!r}")

            kubeconfig_contents = self.generate_kubeconfig(cluster_id, snapshot)

            # get the k8s api server for this cluster
            server_address = (
                get_string(entry, JSON_K8S_API_HOST_PATH) + ":" + get_string(entry, JSON_K8S_API_PORT_PATH)
            )

            clusters.append(RemoteCluster(
                id=cluster_id,
                name=name,
                server_address=server_address,
                type=get_string(entry, JSON_TYPE_PATH),
                kubeconfig_contents=kubeconfig_contents,
            ))

        self.logger.debug(f"Registry reported {len(clusters)} cluster(s)")
        return clusters
