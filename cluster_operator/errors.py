"""Exceptions raised by the Managed Cluster Operator."""

from typing import List


class OperatorError(Exception):
    """Base class for all operator errors."""


class ConfigurationError(OperatorError):
    """Connection settings could not be parsed at startup."""


class RegistryError(OperatorError):
    """Base class for cluster registry failures."""


class RegistryUnavailable(RegistryError):
    """Transport failure, timeout or non-200 status after retries."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RegistryProtocolError(RegistryError):
    """The registry returned a response that could not be understood."""


class ObjectError(OperatorError):
    """A write against the Kubernetes API failed."""

    def __init__(self, message: str, kind: str = "", name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.name = name


class ObjectConflict(ObjectError):
    """The object changed underneath us or already exists."""


class ObjectNotFound(ObjectError):
    """The target object does not exist."""


class SynchronizationError(OperatorError):
    """One or more sub-operations failed while synchronizing a cluster."""

    def __init__(self, cluster_name: str, failures: List[Exception]):
        self.cluster_name = cluster_name
        self.failures = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(f"Failed to synchronize cluster {cluster_name}: {details}")
