from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .haproxy_config import write_config
from .settings import Settings


log = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    NO_PROCESS = "no_process"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


class SupervisorError(RuntimeError):
    """The load balancer could not be located or launched."""


@dataclass(frozen=True)
class ProcessHandle:
    pid: int
    started: float = field(default_factory=time.time)


def read_pid_file(path: str) -> Optional[int]:
    """Return the PID on the first line of ``path``, or None."""
    try:
        with open(path, encoding="utf-8") as f:
            first = f.readline().strip()
    except OSError:
        return None
    try:
        pid = int(first)
    except ValueError:
        log.debug("PID file %s does not start with an integer: %r", path, first)
        return None
    return pid if pid > 0 else None


def process_alive(pid: int, kill: Callable[[int, int], Any] = os.kill) -> bool:
    """Probe ``pid`` with signal 0. A rejected probe counts as not alive."""
    try:
        kill(pid, 0)
    except OSError:
        return False
    return True


def find_running_pid(pid_file: str, kill: Callable[[int, int], Any] = os.kill) -> Optional[int]:
    """Re-discover an already running instance from its PID file.

    Every failure (no file, garbage, dead process, rejected probe) means
    "no running instance".
    """
    pid = read_pid_file(pid_file)
    if pid is None or not process_alive(pid, kill):
        return None
    return pid


class HAProxySupervisor:
    """Owns the lifecycle of the external haproxy process.

    Reloads prefer a graceful handover: the new instance picks up the listening
    sockets of the running one through the control socket (``-x``) and asks it
    to finish its connections and exit (``-sf``). In ``signal`` reload mode an
    instance this supervisor spawned is reloaded in place with SIGUSR2 instead.

    Unexpected exits are restarted after a cooldown, at most ``max_restarts``
    times in a row; one more crash calls ``on_fatal(1)``.

    After ``shutdown`` it never launches again.
    """

    def __init__(
        self,
        config_file: str,
        pid_file: str,
        sock_file: str,
        binary: str = "haproxy",
        reload_mode: str = "handover",
        max_restarts: int = 5,
        restart_cooldown_s: float = 2.0,
        restart_reset_s: float = 60.0,
        start_grace_s: float = 1.0,
        on_fatal: Callable[[int], None] | None = None,
        popen: Callable[..., Any] = subprocess.Popen,
        kill: Callable[[int, int], Any] = os.kill,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.config_file = config_file
        self.pid_file = pid_file
        self.sock_file = sock_file
        self.binary = binary
        self.reload_mode = reload_mode
        self.max_restarts = max(0, int(max_restarts))
        self.restart_cooldown_s = max(0.0, float(restart_cooldown_s))
        self.restart_reset_s = max(0.0, float(restart_reset_s))
        self.start_grace_s = max(0.0, float(start_grace_s))
        self.on_fatal = on_fatal

        self._popen = popen
        self._kill = kill
        self._which = which

        self._lock = threading.Lock()
        self._state = SupervisorState.NO_PROCESS
        self._desired = False
        self._closed = False
        self._proc: Any = None
        self._handle: ProcessHandle | None = None
        self._crashes = 0
        self._executable: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, on_fatal: Callable[[int], None] | None = None, **kwargs: Any) -> "HAProxySupervisor":
        return cls(
            config_file=settings.config_file,
            pid_file=settings.pid_file,
            sock_file=settings.sock_file,
            binary=settings.haproxy_binary,
            reload_mode=settings.reload_mode,
            max_restarts=settings.max_restarts,
            restart_cooldown_s=settings.restart_cooldown_s,
            restart_reset_s=settings.restart_reset_s,
            start_grace_s=settings.start_grace_s,
            on_fatal=on_fatal,
            **kwargs,
        )

    # ---------- introspection ---------- #
    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def handle(self) -> ProcessHandle | None:
        with self._lock:
            return self._handle

    @property
    def desired_running(self) -> bool:
        with self._lock:
            return self._desired

    def locate(self) -> str:
        """Resolve the haproxy executable on PATH; missing is fatal."""
        if self._executable is None:
            found = self._which(self.binary)
            if not found:
                raise SupervisorError(f"{self.binary} executable not found")
            self._executable = found
            log.info("Using HAProxy executable %s", found)
        return self._executable

    def running_pid(self) -> Optional[int]:
        return find_running_pid(self.pid_file, self._kill)

    # ---------- transitions ---------- #
    def apply(self, config_text: str) -> None:
        """Write ``config_text`` and bring a balancer running it online."""
        with self._lock:
            if self._closed:
                log.info("Supervisor is shut down, not applying the new configuration")
                return
            write_config(self.config_file, config_text)
            self._desired = True
            launched = self._reload_locked()
        if launched and self.start_grace_s:
            time.sleep(self.start_grace_s)

    def stop(self) -> bool:
        """Ask the running instance to terminate. Returns False if none was found."""
        with self._lock:
            self._desired = False
            pid = self._proc.pid if self._proc is not None else self.running_pid()
            if pid is None:
                self._state = SupervisorState.NO_PROCESS
                return False
            self._state = SupervisorState.STOPPING
            log.info("Sending SIGTERM to HAProxy pid %d", pid)
            self._signal(pid, signal.SIGTERM)
            if self._proc is None:
                # not our child, nothing will report its exit
                self._state = SupervisorState.NO_PROCESS
                self._handle = None
            return True

    def shutdown(self) -> None:
        """Kill every known instance; used when the controller itself exits."""
        with self._lock:
            self._closed = True
            self._desired = False
            pids: list[int] = []
            if self._proc is not None:
                pids.append(self._proc.pid)
            from_file = self.running_pid()
            if from_file is not None and from_file not in pids:
                pids.append(from_file)
            if pids:
                self._state = SupervisorState.STOPPING
            for pid in pids:
                log.info("Sending SIGKILL to HAProxy pid %d", pid)
                self._signal(pid, signal.SIGKILL)
            if self._proc is None:
                self._state = SupervisorState.NO_PROCESS

    # ---------- internals (call with self._lock held) ---------- #
    def _reload_locked(self) -> bool:
        """Returns True when a new process was spawned."""
        previous = self.running_pid()
        own_pid = self._proc.pid if self._proc is not None else None

        if self.reload_mode == "signal" and own_pid is not None and previous == own_pid:
            log.info("Sending SIGUSR2 (reload) to HAProxy pid %d", own_pid)
            self._signal(own_pid, signal.SIGUSR2)
            return False

        self._launch_locked(previous)
        return True

    def _launch_locked(self, previous: Optional[int]) -> None:
        args = [self.locate(), "-W", "-f", self.config_file]
        if previous is not None:
            args += ["-x", self.sock_file, "-sf", str(previous)]

        log.info("Starting new HAProxy instance: %s", " ".join(args))
        self._state = SupervisorState.STARTING
        try:
            # stdin/stdout/stderr are inherited
            proc = self._popen(args)
        except OSError as e:
            self._state = SupervisorState.NO_PROCESS if self._proc is None else SupervisorState.RUNNING
            raise SupervisorError(f"Error occurred while starting a new HAProxy instance: {e}") from e

        handle = ProcessHandle(pid=proc.pid)
        self._proc = proc
        self._handle = handle
        self._state = SupervisorState.RUNNING
        threading.Thread(
            target=self._wait,
            args=(proc, handle),
            name=f"haproxy-wait-{proc.pid}",
            daemon=True,
        ).start()

    def _signal(self, pid: int, sig: int) -> None:
        try:
            self._kill(pid, sig)
        except ProcessLookupError:
            log.info("HAProxy pid %d already gone", pid)
        except OSError as e:
            log.warning("Cannot send signal %d to HAProxy pid %d: %s", sig, pid, e)

    # ---------- waiter thread ---------- #
    def _wait(self, proc: Any, handle: ProcessHandle) -> None:
        code = proc.wait()
        log.info("Master HAProxy started with pid %d has finished (status %s)", handle.pid, code)

        with self._lock:
            if proc is not self._proc:
                # superseded by a handover, its exit is the expected end of draining
                return
            self._proc = None
            self._handle = None
            if not self._desired:
                self._state = SupervisorState.NO_PROCESS
                return

            self._state = SupervisorState.CRASHED
            if time.time() - handle.started >= self.restart_reset_s:
                self._crashes = 0
            exhausted = self._crashes >= self.max_restarts
            if not exhausted:
                self._crashes += 1
            attempt = self._crashes

        if exhausted:
            log.critical(
                "HAProxy exited unexpectedly after %d consecutive restarts; giving up",
                self.max_restarts,
            )
            self._fatal(1)
            return

        log.warning(
            "HAProxy pid %d exited unexpectedly (status %s); restart %d/%d in %.1fs",
            handle.pid,
            code,
            attempt,
            self.max_restarts,
            self.restart_cooldown_s,
        )
        time.sleep(self.restart_cooldown_s)

        with self._lock:
            if self._closed or not self._desired or self._state != SupervisorState.CRASHED:
                return
            try:
                self._launch_locked(self.running_pid())
            except SupervisorError:
                log.exception("Restarting HAProxy failed")
                failed = True
            else:
                failed = False
        if failed:
            self._fatal(1)

    def _fatal(self, code: int) -> None:
        if self.on_fatal is not None:
            self.on_fatal(code)
