"""Shared fixtures for the operator tests."""

import pytest

from cluster_operator.connection import ConnectionConfig
from cluster_operator.registry import RegistryClient, RemoteCluster
from cluster_operator.synchronizer import ClusterSynchronizer

from .fakes import FakeCache, FakeRegistryTransport, FakeWriter


@pytest.fixture
def remote_cluster():
    return RemoteCluster(
        id="id",
        name="name",
        server_address="123.123.123.0:1234",
        type="oke",
        kubeconfig_contents="some stuff",
    )


@pytest.fixture
def secret_cache():
    return FakeCache("secrets")


@pytest.fixture
def record_cache():
    return FakeCache("records")


@pytest.fixture
def writer(secret_cache, record_cache):
    return FakeWriter(secret_cache, record_cache)


@pytest.fixture
def synchronizer(writer, secret_cache, record_cache):
    return ClusterSynchronizer(writer, secret_cache, record_cache)


@pytest.fixture
def connection_config():
    return ConnectionConfig(
        url="https://rancher.foo.verrazzano.example.com/",
        username="user1",
        password="s3cret",
        host="123.123.123.0",
        ca_data=b"",
    )


@pytest.fixture
def registry_transport():
    return FakeRegistryTransport()


@pytest.fixture
def registry_client(connection_config, registry_transport):
    return RegistryClient(connection_config, transport=registry_transport)
