import pytest
from docker.errors import APIError, DockerException

from autolb.docker_ops import ENABLE_LABEL, InventoryError, docker_available, list_enabled_containers


class _Container:
    def __init__(self, name, labels, networks):
        self.name = name
        self.labels = labels
        self.attrs = {"NetworkSettings": {"Networks": {k: {"IPAddress": v} for k, v in networks.items()}}}


class _Containers:
    def __init__(self, items, error=None):
        self.items = items
        self.error = error
        self.filters = None

    def list(self, filters=None, **kwargs):
        self.filters = filters
        if self.error:
            raise self.error
        return self.items


class _Client:
    def __init__(self, items=(), error=None, ping_error=None):
        self.containers = _Containers(list(items), error)
        self.ping_error = ping_error

    def ping(self):
        if self.ping_error:
            raise self.ping_error
        return True


def test_lists_with_enable_label_filter():
    client = _Client(
        [_Container("web-1", {"lb.enable": "Y", "lb.publish": "80"}, {"bridge": "172.17.0.2", "none": ""})]
    )
    (info,) = list_enabled_containers(client)
    assert client.containers.filters == {"label": ENABLE_LABEL}
    assert info.name == "web-1"
    assert info.labels["lb.publish"] == "80"
    assert info.networks == {"bridge": "172.17.0.2", "none": ""}


def test_container_without_network_settings():
    c = _Container("bare", {}, {})
    c.attrs = {}
    (info,) = list_enabled_containers(_Client([c]))
    assert info.networks == {}


def test_docker_errors_become_inventory_errors():
    with pytest.raises(InventoryError, match=ENABLE_LABEL):
        list_enabled_containers(_Client(error=APIError("boom")))


def test_docker_available():
    assert docker_available(_Client())
    assert not docker_available(_Client(ping_error=DockerException("down")))
