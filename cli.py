from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time

from autolb.controller import Controller
from autolb.docker_ops import DockerInventory, InventoryError, docker_available
from autolb.haproxy_config import ConfigRenderError
from autolb.settings import MODES, Settings


def _configure_logging(level: str) -> None:
    logging.Formatter.converter = time.gmtime  # type: ignore[attr-defined]
    logging.basicConfig(
        level=level,
        format="%(asctime)sZ %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def _with_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    changes = {}
    if args.check_time is not None:
        changes["check_time_s"] = args.check_time if args.check_time > 0 else 5
    if args.stats_port is not None:
        changes["stats_port"] = args.stats_port
    if args.mode is not None:
        changes["mode"] = args.mode
    return dataclasses.replace(settings, **changes) if changes else settings


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Container-driven HAProxy controller")
    p.add_argument("--check-time", type=int, default=None, help="Seconds between inventory polls (CHECK_TIME)")
    p.add_argument("--stats-port", type=int, default=None, help="Statistics listener port, <=0 disables (LB_STATS_PORT)")
    p.add_argument("--mode", choices=MODES, default=None, help="Rendering mode (LB_MODE)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Reconcile containers into HAProxy until a termination signal")
    sub.add_parser("render", help="Print the configuration the current containers would produce")

    args = p.parse_args(argv)

    try:
        settings = _with_overrides(Settings.from_env(), args)
    except ValueError as e:
        _configure_logging("INFO")
        logging.getLogger("autolb").critical("Invalid settings: %s", e)
        return 2

    _configure_logging(settings.log_level)
    log = logging.getLogger("autolb")

    if args.cmd == "render":
        try:
            controller = Controller(settings, inventory=DockerInventory())
            _, rendered = controller.reconciler.render_current()
        except (InventoryError, ConfigRenderError) as e:
            log.critical("%s", e)
            return 1
        sys.stdout.write(rendered.text)
        print(f"fingerprint {rendered.fingerprint}", file=sys.stderr)
        return 0

    if args.cmd == "run":
        try:
            inventory = DockerInventory()
        except InventoryError as e:
            log.critical("%s", e)
            return 1
        if not docker_available(inventory.client):
            log.critical("Docker daemon is not reachable")
            return 1
        controller = Controller(settings, inventory=inventory)
        controller.install_signal_handlers()
        return controller.run()

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
