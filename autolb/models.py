from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ContainerInfo:
    """Raw metadata for one container, as returned by the inventory query."""

    name: str
    labels: dict[str, str] = field(default_factory=dict, hash=False)
    networks: dict[str, str] = field(default_factory=dict, hash=False)  # network name -> IP


@dataclass(frozen=True)
class Endpoint:
    name: str
    address: str
    port: int


@dataclass(frozen=True)
class PublishKey:
    port: int
    bind_address: str = ""
    tls_cert_path: str = ""  # empty means plain

    @property
    def tls(self) -> bool:
        return bool(self.tls_cert_path)

    def sort_key(self) -> tuple[str, int, str]:
        # tls_cert_path only breaks ties between keys sharing address and port
        return (self.bind_address, self.port, self.tls_cert_path)


@dataclass(frozen=True)
class ServiceConfiguration:
    publish: PublishKey
    backends: tuple[Endpoint, ...]


@dataclass(frozen=True)
class WholeConfiguration:
    services: tuple[ServiceConfiguration, ...] = ()
    stats_port: int = -1
    mode: str = "http"

    @property
    def stats(self) -> bool:
        return self.stats_port > 0

    @property
    def empty(self) -> bool:
        return not self.services


@dataclass(frozen=True)
class SkippedContainer:
    name: str
    reason: str
