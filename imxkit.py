#!/usr/bin/env python3
"""
imxkit: i.MX21 Serial Boot Manager
====================================

Drives the i.MX21 iROM over a serial port. Commands run left to right and
the first failure stops the rest:

    imxkit [-p PORT] COMMAND [PARAMETERS] [COMMAND [PARAMETERS] ...]

Examples:
    python imxkit.py sync
    python imxkit.py setup download test.bin 0xc0000000 run
    python imxkit.py -p /dev/ttyUSB1 baud setup download zImage 0xc0008000 run terminal
    python imxkit.py --loopback setup download test.bin 0xc0000000 run
"""

import argparse
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from imx21_boot import __version__
from imx21_boot import constants as C
from imx21_boot.commands import CommandRunner, parse_sequence
from imx21_boot.config import BootConfig
from imx21_boot.errors import BootError
from imx21_boot.log_setup import setup_logging
from imx21_boot.session import BootSession
from imx21_boot.transport import BaseTransport, LoopbackTransport, SerialTransport

log = logging.getLogger('imx21_boot.cli')

COMMAND_HELP = f"""commands:
  sync                     Ping the iROM
  set ADDR {{8|16|32}} VALUE Write to a register
  download FILE ADDR       Write a binary image to RAM at ADDR
  run [ADDR]               Run code at ADDR (default: last downloaded image)
  setup                    Initialize the SDRAM controller
  baud [BAUD]              Change the iROM baud rate (default {C.DEFAULT_HIGHSPEED})
  terminal [BAUD]          Interactive terminal on the open port (default {C.DEFAULT_TERMBAUD})
                           ^C is passed to the board; kill the process to leave.

Default port is {C.DEFAULT_PORT}, start-up baud rate is {C.DEFAULT_BAUD}.
"""


class DownloadProgress:
    """Hands out rich progress callbacks, one bar per download."""

    def __init__(self, console: Console, enabled: bool = True):
        self.console = console
        self.enabled = enabled
        self._active: List[Progress] = []

    def __call__(self, label: str):
        if not self.enabled:
            return None
        progress = Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        state = {}

        def update(done: int, total: int) -> None:
            if "task" not in state:
                progress.start()
                self._active.append(progress)
                state["task"] = progress.add_task(label, total=total)
            progress.update(state["task"], completed=done)
            if done >= total:
                progress.stop()
                self._active.remove(progress)

        return update

    def close(self) -> None:
        """Stop any bar left running by a failed download."""
        while self._active:
            self._active.pop().stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imxkit",
        description="i.MX21 Serial Boot Manager, talks to the iROM over UART",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=COMMAND_HELP,
    )
    parser.add_argument("--version", action="version", version=f"imxkit {__version__}")
    parser.add_argument("-p", "--port", default=C.DEFAULT_PORT,
                        help=f"Serial port (default: {C.DEFAULT_PORT})")
    parser.add_argument("--timeout-ms", type=int, default=C.READ_TIMEOUT_MS,
                        help=f"Response timeout per read (default: {C.READ_TIMEOUT_MS})")
    order = parser.add_mutually_exclusive_group()
    order.add_argument("--big-endian-host", dest="big_endian", action="store_true",
                       default=None, help="Pack packet fields for a big-endian host")
    order.add_argument("--little-endian-host", dest="big_endian", action="store_false",
                       help="Pack packet fields for a little-endian host")
    parser.add_argument("--loopback", action="store_true",
                        help="Use the simulated iROM instead of a serial port")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show packet-level debug output")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Only report errors")
    parser.add_argument("--log-file", help="Write a DEBUG log to this file")
    parser.add_argument("commands", nargs=argparse.REMAINDER,
                        help="Command sequence (see below)")
    return parser


def build_config(args: argparse.Namespace) -> BootConfig:
    config = BootConfig(port=args.port, read_timeout_ms=args.timeout_ms)
    if args.big_endian is not None:
        config.big_endian_host = args.big_endian
    return config


def open_transport(args: argparse.Namespace, config: BootConfig) -> BaseTransport:
    if args.loopback:
        transport = LoopbackTransport(config.magic, config.big_endian_host)
    else:
        transport = SerialTransport(config.port, config.baud, config.read_timeout_ms)
    transport.open()
    return transport


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.commands:
        parser.print_help()
        return 0

    if args.quiet:
        level = logging.ERROR
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    console = Console(stderr=True)
    setup_logging(console_level=level, log_file=args.log_file, console=console)

    config = build_config(args)
    try:
        commands = parse_sequence(args.commands)
    except BootError as e:
        log.error(f"{e}, quitting")
        return 1

    progress = DownloadProgress(console, enabled=not args.quiet)
    transport = None
    try:
        transport = open_transport(args, config)
        session = BootSession(transport, config)
        CommandRunner(session, progress_factory=progress).run(commands)
    except BootError as e:
        progress.close()
        log.error(f"{e}, quitting")
        return 1
    except KeyboardInterrupt:
        progress.close()
        log.warning("Interrupted by user")
        return 130
    finally:
        if transport is not None:
            transport.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
