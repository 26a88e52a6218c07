"""Registry connection settings shared between the poll loop and the CA reload handler."""

import logging
import threading
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Immutable view of the connection settings used for one registry call."""
    url: str
    username: str
    password: str
    host: str = ""
    ca_data: bytes = b""

    @property
    def url_host(self) -> str:
        """Host (and port, if any) of the registry URL."""
        return urlsplit(self.url).netloc

    @property
    def host_override(self) -> str:
        """The explicit host, if it differs from the URL's host."""
        if self.host and self.host != self.url_host:
            return self.host
        return ""


class ConnectionConfig:
    """
    Registry endpoint, credentials and CA certificate.

    The CA certificate is the only attribute mutated after construction and
    is guarded by a lock; readers always go through ``snapshot()``.
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        host: str = "",
        ca_data: Optional[bytes] = None,
    ):
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.host = host
        self._ca_data = bytes(ca_data or b"")
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        url: str,
        username: str,
        password: str,
        host: str = "",
        ca_data: Optional[bytes] = None,
    ) -> "ConnectionConfig":
        """
        Validate startup settings and build a ConnectionConfig.

        Raises:
            ConfigurationError: if the URL or credentials are unusable
        """
        if not url or not username or not password:
            raise ConfigurationError("Registry URL and/or credentials not specified")

        parsed = urlsplit(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid registry URL '{url}'")

        return cls(url, username, password, host=host, ca_data=ca_data)

    @property
    def ca_data(self) -> bytes:
        with self._lock:
            return self._ca_data

    def replace_ca_data(self, ca_data: Optional[bytes]) -> bool:
        """
        Replace the CA certificate if it differs from the current value.

        Returns:
            True if the value was replaced
        """
        new_data = bytes(ca_data or b"")
        with self._lock:
            if new_data == self._ca_data:
                return False
            self._ca_data = new_data
        logger.info(f"Registry CA certificate replaced ({len(new_data)} bytes)")
        return True

    def snapshot(self) -> ConnectionSnapshot:
        with self._lock:
            ca_data = self._ca_data
        return ConnectionSnapshot(
            url=self.url,
            username=self.username,
            password=self.password,
            host=self.host,
            ca_data=ca_data,
        )
