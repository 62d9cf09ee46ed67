from __future__ import annotations

import logging
import queue
import signal
from typing import Any, Callable, Iterable

from .docker_ops import DockerInventory
from .models import ContainerInfo
from .reconciler import Reconciler
from .settings import Settings
from .supervisor import HAProxySupervisor, SupervisorError


log = logging.getLogger(__name__)

EXIT_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class Controller:
    """Wires the reconciler, the supervisor and the termination channel.

    Signal handlers and fatal callbacks only push an exit status onto one
    queue; the thread calling ``run`` does the teardown.
    """

    def __init__(
        self,
        settings: Settings,
        inventory: Callable[[], Iterable[ContainerInfo]] | None = None,
        **supervisor_kwargs: Any,
    ) -> None:
        self.settings = settings
        self.join_timeout_s = 10.0
        # SimpleQueue.put is reentrant, safe to call from a signal handler
        self._exit: queue.SimpleQueue[int] = queue.SimpleQueue()
        self.supervisor = HAProxySupervisor.from_settings(settings, on_fatal=self.terminate, **supervisor_kwargs)
        self.reconciler = Reconciler.from_settings(
            settings,
            inventory=inventory if inventory is not None else DockerInventory(),
            supervisor=self.supervisor,
            on_fatal=self.terminate,
        )

    def terminate(self, code: int) -> None:
        self._exit.put(code)

    def install_signal_handlers(self) -> None:
        for sig in EXIT_SIGNALS:
            signal.signal(sig, self._on_signal)

    def _on_signal(self, signum: int, _frame: Any) -> None:
        log.info("Exit signal received (%s)", signal.Signals(signum).name)
        self.terminate(0)

    def wait(self, poll_s: float = 0.5) -> int:
        while True:
            try:
                return self._exit.get(timeout=poll_s)
            except queue.Empty:
                continue

    def run(self) -> int:
        if self.settings.stats_enabled:
            log.info("HAProxy statistics port is %d", self.settings.stats_port)
        try:
            self.supervisor.locate()
            self.reconciler.start_baseline()
        except SupervisorError as e:
            log.critical("%s", e)
            return 1
        except Exception:
            log.exception("Starting the baseline HAProxy instance failed")
            self.supervisor.shutdown()
            return 1

        self.reconciler.start()
        code = self.wait()

        self.reconciler.stop()
        # a cycle outliving the join finds the supervisor shut down
        self.reconciler.join(timeout=self.join_timeout_s)
        self.supervisor.shutdown()
        log.info("auto-lb terminated")
        return code
