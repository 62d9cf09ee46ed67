from __future__ import annotations

import logging
from typing import Any

import docker
from docker.errors import DockerException

from .models import ContainerInfo


log = logging.getLogger(__name__)

ENABLE_LABEL = "lb.enable=Y"


class InventoryError(RuntimeError):
    """The container runtime could not be queried."""


def client_from_env() -> docker.DockerClient:
    try:
        return docker.from_env()
    except DockerException as e:
        raise InventoryError(f"Cannot connect to the docker daemon: {e}") from e


def docker_available(client: docker.DockerClient) -> bool:
    try:
        client.ping()
        return True
    except DockerException:
        return False


def _networks(attrs: dict[str, Any]) -> dict[str, str]:
    networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
    return {name: (net or {}).get("IPAddress") or "" for name, net in networks.items()}


def list_enabled_containers(client: docker.DockerClient) -> list[ContainerInfo]:
    """Return every running container labeled ``lb.enable=Y``.

    Order is whatever the daemon returns; callers must not depend on it.
    """
    try:
        containers = client.containers.list(filters={"label": ENABLE_LABEL})
    except DockerException as e:
        raise InventoryError(f"Listing containers with label {ENABLE_LABEL} failed: {e}") from e

    out: list[ContainerInfo] = []
    for c in containers:
        out.append(
            ContainerInfo(
                name=c.name.lstrip("/"),
                labels=dict(c.labels or {}),
                networks=_networks(c.attrs or {}),
            )
        )
    return out


class DockerInventory:
    """Callable inventory source bound to one docker client."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self.client = client or client_from_env()

    def __call__(self) -> list[ContainerInfo]:
        return list_enabled_containers(self.client)
