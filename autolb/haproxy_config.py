from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from .models import WholeConfiguration


log = logging.getLogger(__name__)


DEFAULT_TEMPLATE = """\
global
    stats socket {{ sock_file }} mode 600 expose-fd listeners level user
    stats timeout 30s
    pidfile {{ pid_file }}
    log /dev/log local0 debug

defaults
    mode                    {{ mode }}
    log                     global
{% if mode == "http" %}
    option                  httplog
    option                  dontlognull
    option                  http-server-close
    option                  redispatch
    option                  forwardfor
    option                  originalto
    compression algo        gzip
    compression type        text/css text/html text/javascript application/javascript text/plain text/xml application/json
    timeout http-request    10s
    timeout http-keep-alive 10s
{% else %}
    option                  tcplog
    option                  dontlognull
    option                  redispatch
{% endif %}
    retries                 3
    timeout queue           1m
    timeout connect         10s
    timeout client          1m
    timeout server          1m
    timeout check           10s
    maxconn                 3000
{% if stats %}

listen stats
    mode http
    bind *:{{ stats_port }}
    stats enable
    stats hide-version
    stats refresh 5s
    stats show-node
    stats uri /
{% endif %}
{% for service in services %}
{% set key = service.publish %}
{% set name = "port_" ~ key.bind_address ~ "_" ~ key.port %}

frontend {{ name }}
    bind {{ key.bind_address or "*" }}:{{ key.port }}{{ " ssl crt " ~ key.tls_cert_path if key.tls_cert_path else "" }}
    default_backend {{ name }}_backends
{% if mode == "http" %}
    http-response del-header ETag
{% endif %}

backend {{ name }}_backends
    balance leastconn
    stick-table type ip size 200k expire 520m
    stick on src
{% for backend in service.backends %}
    server {{ backend.name }}_{{ loop.index }} {{ backend.address }}:{{ backend.port }}
{% endfor %}
{% endfor %}
"""


class ConfigRenderError(RuntimeError):
    """The template could not be loaded, parsed or rendered."""


class ConfigWriteError(RuntimeError):
    pass


@dataclass(frozen=True)
class RenderedConfig:
    text: str
    fingerprint: str


def fingerprint(text: str) -> str:
    """Content digest used only to detect that nothing changed."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class ConfigSynthesizer:
    """Renders a WholeConfiguration into haproxy.cfg text.

    If ``template_file`` exists when rendering, its content replaces the
    built-in template verbatim. The synthesizer performs no sorting of its own;
    determinism comes from the ordering of the configuration it is given.
    """

    def __init__(self, pid_file: str, sock_file: str, template_file: str | None = None) -> None:
        self.pid_file = pid_file
        self.sock_file = sock_file
        self.template_file = template_file
        self.env = Environment(
            loader=BaseLoader(),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def template_source(self) -> tuple[str, str]:
        """Return (source, origin) of the template to use for the next render."""
        if self.template_file:
            path = Path(self.template_file)
            if path.exists():
                try:
                    return path.read_text(encoding="utf-8"), str(path)
                except OSError as e:
                    raise ConfigRenderError(f"Cannot read override template {path}: {e}") from e
        return DEFAULT_TEMPLATE, "built-in template"

    def render(self, whole: WholeConfiguration) -> RenderedConfig:
        source, origin = self.template_source()
        model = {
            "services": whole.services,
            "stats": whole.stats,
            "stats_port": whole.stats_port,
            "mode": whole.mode,
            "pid_file": self.pid_file,
            "sock_file": self.sock_file,
        }
        try:
            text = self.env.from_string(source).render(**model)
        except TemplateError as e:
            raise ConfigRenderError(f"Rendering {origin} failed: {type(e).__name__}: {e}") from e
        return RenderedConfig(text=text, fingerprint=fingerprint(text))


def write_config(path: str, text: str) -> int:
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        written = p.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ConfigWriteError(f"Cannot write configuration to {p}: {e}") from e
    log.info("Wrote %d bytes to %s", written, p)
    return written
