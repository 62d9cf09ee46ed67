from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


MODES = ("http", "tcp")
EMPTY_POLICIES = ("serve", "stop")
RELOAD_MODES = ("handover", "signal")


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if not raw:
        return default
    return raw


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} is not convertible to integer: {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} is not a number: {raw!r}") from None


def _env_choice(env: Mapping[str, str], name: str, choices: tuple[str, ...], default: str) -> str:
    value = _env_str(env, name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}; got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    # Core
    stats_port: int = -1
    check_time_s: int = 5
    mode: str = "http"
    empty_policy: str = "serve"

    # Files owned by the controller
    pid_file: str = "/tmp/haproxy.pid"
    sock_file: str = "/tmp/haproxy.sock"
    config_file: str = "/usr/local/etc/haproxy/haproxy.cfg"
    template_file: str = "/haproxy.tmpl"

    # Supervision
    haproxy_binary: str = "haproxy"
    reload_mode: str = "handover"
    max_restarts: int = 5
    restart_cooldown_s: float = 2.0
    restart_reset_s: float = 60.0
    start_grace_s: float = 1.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Raises ValueError naming the variable when a value cannot be used.
        """
        env = os.environ if env is None else env

        check_time = _env_int(env, "CHECK_TIME", 5)
        if check_time <= 0:
            check_time = 5

        return cls(
            stats_port=_env_int(env, "LB_STATS_PORT", -1),
            check_time_s=check_time,
            mode=_env_choice(env, "LB_MODE", MODES, "http"),
            empty_policy=_env_choice(env, "LB_EMPTY_POLICY", EMPTY_POLICIES, "serve"),
            pid_file=_env_str(env, "HAPROXY_PID_FILE", cls.pid_file),
            sock_file=_env_str(env, "HAPROXY_SOCK_FILE", cls.sock_file),
            config_file=_env_str(env, "HAPROXY_CONFIG_FILE", cls.config_file),
            template_file=_env_str(env, "HAPROXY_TEMPLATE_FILE", cls.template_file),
            haproxy_binary=_env_str(env, "HAPROXY_BINARY", cls.haproxy_binary),
            reload_mode=_env_choice(env, "LB_RELOAD_MODE", RELOAD_MODES, "handover"),
            max_restarts=max(0, _env_int(env, "LB_MAX_RESTARTS", 5)),
            restart_cooldown_s=max(0.0, _env_float(env, "LB_RESTART_COOLDOWN_S", 2.0)),
            restart_reset_s=max(0.0, _env_float(env, "LB_RESTART_RESET_S", 60.0)),
            start_grace_s=max(0.0, _env_float(env, "LB_START_GRACE_S", 1.0)),
            log_level=_env_str(env, "LOG_LEVEL", "INFO").upper(),
        )

    @property
    def stats_enabled(self) -> bool:
        return self.stats_port > 0
