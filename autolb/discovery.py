from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import ContainerInfo, Endpoint, PublishKey, ServiceConfiguration, SkippedContainer


log = logging.getLogger(__name__)

PUBLISH_LABEL = "lb.publish"
TARGET_LABEL = "lb.target"
BIND_ADDRESS_LABEL = "lb.dst_addr"
SSL_LABEL = "lb.ssl"


class LabelError(ValueError):
    pass


class ContainerLabels(BaseModel):
    """Typed view over the ``lb.*`` labels of one container."""

    model_config = ConfigDict(frozen=True)

    publish: int = Field(..., alias=PUBLISH_LABEL, ge=1, le=65535, description="Externally exposed port")
    target: int = Field(..., alias=TARGET_LABEL, ge=1, le=65535, description="Container-side port")
    bind_address: str = Field("", alias=BIND_ADDRESS_LABEL, description="Listen address, empty = any")
    ssl: str = Field("", alias=SSL_LABEL, description="PEM bundle enabling TLS on the frontend")

    @field_validator("bind_address", "ssl")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("ssl")
    @classmethod
    def _pem_must_exist(cls, v: str) -> str:
        if v and not (os.path.isfile(v) and os.access(v, os.R_OK)):
            raise ValueError(f"pem file does not exist or is not readable: {v}")
        return v

    def publish_key(self) -> PublishKey:
        return PublishKey(port=self.publish, bind_address=self.bind_address, tls_cert_path=self.ssl)


def _describe(err: ValidationError, labels: dict[str, str]) -> str:
    parts: list[str] = []
    for e in err.errors():
        label = str(e["loc"][0]) if e.get("loc") else "?"
        if e["type"] == "missing":
            parts.append(f"label {label} not found")
        else:
            parts.append(f"label {label}={labels.get(label, '')!r}: {e['msg']}")
    return "; ".join(parts)


def parse_labels(labels: dict[str, str]) -> ContainerLabels:
    try:
        return ContainerLabels.model_validate(labels)
    except ValidationError as e:
        raise LabelError(_describe(e, labels)) from e


@dataclass(frozen=True)
class Extraction:
    publish: PublishKey
    endpoints: tuple[Endpoint, ...]


def extract(container: ContainerInfo) -> Union[Extraction, SkippedContainer]:
    """Turn one container into endpoints, or explain why it was skipped.

    One endpoint is produced per attached network that has an address.
    """
    try:
        parsed = parse_labels(container.labels)
    except LabelError as e:
        return SkippedContainer(name=container.name, reason=str(e))

    endpoints = tuple(
        Endpoint(name=container.name, address=address, port=parsed.target)
        for _, address in sorted(container.networks.items())
        if address
    )
    return Extraction(publish=parsed.publish_key(), endpoints=endpoints)


def _backend_order(e: Endpoint) -> tuple[str, str, int]:
    return (e.name, e.address, e.port)


def group_services(extractions: Iterable[Extraction]) -> tuple[ServiceConfiguration, ...]:
    """Group endpoints by publish key and order everything deterministically.

    Backends are ordered by name, services by (bind address, port). The result
    does not depend on the order of ``extractions``.
    """
    group: dict[PublishKey, list[Endpoint]] = defaultdict(list)
    for ex in extractions:
        if ex.endpoints:
            group[ex.publish].extend(ex.endpoints)

    services = [
        ServiceConfiguration(publish=key, backends=tuple(sorted(backends, key=_backend_order)))
        for key, backends in group.items()
    ]
    services.sort(key=lambda s: s.publish.sort_key())
    return tuple(services)


@dataclass(frozen=True)
class Discovery:
    services: tuple[ServiceConfiguration, ...]
    skipped: tuple[SkippedContainer, ...]


def collect(containers: Iterable[ContainerInfo]) -> Discovery:
    """Extract every container, group the successes and keep the failures aside."""
    ok: list[Extraction] = []
    skipped: list[SkippedContainer] = []
    for c in containers:
        result = extract(c)
        if isinstance(result, SkippedContainer):
            log.warning("Container %s skipped due to error: %s", result.name, result.reason)
            skipped.append(result)
        else:
            ok.append(result)
    return Discovery(services=group_services(ok), skipped=tuple(skipped))
