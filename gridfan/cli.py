"""Command line entry point: run the daemon or get/set fan speeds once."""

import argparse
import logging
import sys

from gridfan.config import Config, ConfigError, parse_cli_args
from gridfan.controller import Controller
from gridfan.daemon import Daemon
from gridfan.protocol import ProtocolError

log = logging.getLogger(__name__)


def get_speeds(controller: Controller, fans: tuple[int, ...]) -> None:
    with controller.session():
        for fan in fans:
            print(f"{fan} {controller.get_speed(fan)}")


def set_speeds(controller: Controller, fans: tuple[int, ...], rpm: int) -> None:
    with controller.session():
        for fan in fans:
            controller.set_speed(fan, rpm)
            log.info("Fan %d set to %d RPM", fan, rpm)


def run_command(config: Config, args: argparse.Namespace) -> int:
    """Run a one-shot get or set command. Returns the process exit status."""
    controller = Controller(config.device_path)
    try:
        if args.command == "get":
            get_speeds(controller, args.fans)
        else:
            set_speeds(controller, args.fans, args.rpm)
    except (OSError, ProtocolError, ValueError) as e:
        print(f"Failed to {args.command} fan speed: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = parse_cli_args(argv)
    try:
        config = Config.load(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    config.setup_logging()

    if args.command == "daemon":
        Daemon(config).run()
        return

    sys.exit(run_command(config, args))


if __name__ == "__main__":
    main()
