from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from .discovery import collect
from .docker_ops import ENABLE_LABEL
from .haproxy_config import ConfigSynthesizer, RenderedConfig
from .models import ContainerInfo, WholeConfiguration
from .settings import Settings
from .supervisor import HAProxySupervisor


log = logging.getLogger(__name__)

# last-applied value before anything was applied, and after a stop
NO_CONFIGURATION: str | None = None


def log_topology(whole: WholeConfiguration) -> None:
    log.info("Backends change detected. Reconfiguring haproxy with:")
    for service in whole.services:
        key = service.publish
        if key.tls:
            proto = "SSL"
        else:
            proto = "HTTP" if whole.mode == "http" else "TCP"
        log.info(
            "Publish %s:%d %s %s",
            key.bind_address or "*",
            key.port,
            proto,
            key.tls_cert_path,
        )
        for backend in service.backends:
            log.info("  |- Backend %s at %s port %d", backend.name, backend.address, backend.port)


class Reconciler:
    """Continuously reconciles the load balancer with the container inventory.

    One cycle: query inventory, extract and group endpoints, render, compare
    the fingerprint with the last applied one and apply on change. Cycles
    never overlap; the thread sleeps ``interval_s`` between them.

    With ``empty_policy="serve"`` an empty inventory is rendered and applied
    like any other (the balancer keeps listening with no servers). With
    ``"stop"`` the balancer is stopped and the last fingerprint reset, so the
    next non-empty cycle applies from scratch.
    """

    def __init__(
        self,
        inventory: Callable[[], Iterable[ContainerInfo]],
        synthesizer: ConfigSynthesizer,
        supervisor: HAProxySupervisor,
        stats_port: int = -1,
        mode: str = "http",
        empty_policy: str = "serve",
        interval_s: float = 5,
        on_fatal: Callable[[int], None] | None = None,
    ) -> None:
        self.inventory = inventory
        self.synthesizer = synthesizer
        self.supervisor = supervisor
        self.stats_port = stats_port
        self.mode = mode
        self.empty_policy = empty_policy
        self.interval_s = max(0.0, float(interval_s))
        self.on_fatal = on_fatal

        self.last_fingerprint: str | None = NO_CONFIGURATION
        self._no_services_logged = False
        self._stop = threading.Event()
        self._thr: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        inventory: Callable[[], Iterable[ContainerInfo]],
        supervisor: HAProxySupervisor,
        on_fatal: Callable[[int], None] | None = None,
    ) -> "Reconciler":
        synthesizer = ConfigSynthesizer(
            pid_file=settings.pid_file,
            sock_file=settings.sock_file,
            template_file=settings.template_file,
        )
        return cls(
            inventory=inventory,
            synthesizer=synthesizer,
            supervisor=supervisor,
            stats_port=settings.stats_port,
            mode=settings.mode,
            empty_policy=settings.empty_policy,
            interval_s=settings.check_time_s,
            on_fatal=on_fatal,
        )

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = threading.Thread(target=self._loop, name="reconciler", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr is not None:
            self._thr.join(timeout)

    def _loop(self) -> None:
        log.info("Container refresh interval check is %s seconds", self.interval_s)
        while not self._stop.is_set():
            try:
                self.reconcile_once()
            except Exception:
                # inventory, render, write and launch failures leave no safe state to continue from
                log.exception("Reconciliation cycle failed")
                if self.on_fatal is not None:
                    self.on_fatal(1)
                return
            self._stop.wait(self.interval_s)

    def configuration(self, containers: Iterable[ContainerInfo]) -> WholeConfiguration:
        discovery = collect(containers)
        return WholeConfiguration(services=discovery.services, stats_port=self.stats_port, mode=self.mode)

    def render_current(self) -> tuple[WholeConfiguration, RenderedConfig]:
        """Query the inventory and render it without applying anything."""
        whole = self.configuration(self.inventory())
        return whole, self.synthesizer.render(whole)

    def start_baseline(self) -> None:
        """Apply an empty configuration so a balancer is listening from the start."""
        if self.empty_policy != "serve":
            return
        whole = WholeConfiguration(stats_port=self.stats_port, mode=self.mode)
        self._apply(self.synthesizer.render(whole))

    def reconcile_once(self) -> bool:
        """Run one cycle. Returns True when the balancer was reconfigured."""
        whole = self.configuration(self.inventory())

        if whole.empty:
            if not self._no_services_logged:
                log.info("No container found with label %s", ENABLE_LABEL)
                self._no_services_logged = True
            if self.empty_policy == "stop":
                if self.last_fingerprint is NO_CONFIGURATION:
                    return False
                log.info("No backends left, stopping HAProxy")
                self.supervisor.stop()
                self.last_fingerprint = NO_CONFIGURATION
                return True
        else:
            self._no_services_logged = False

        rendered = self.synthesizer.render(whole)
        if rendered.fingerprint == self.last_fingerprint:
            return False

        log_topology(whole)
        self._apply(rendered)
        return True

    def _apply(self, rendered: RenderedConfig) -> None:
        self.supervisor.apply(rendered.text)
        self.last_fingerprint = rendered.fingerprint
