"""
Command sequence parsing and execution.

The command line is a list of commands run in order:

    sync
    set ADDRESS {8|16|32} VALUE
    download FILE ADDRESS
    run [ADDRESS]
    setup
    baud [BAUD]
    terminal [BAUD]

The whole list is parsed before anything is sent. Execution is a strict
pipeline: the first failing command raises and the rest are skipped.
`set`, `download`, `setup` and `baud` sync first if no handshake has been
done yet; `run` and `terminal` never do, since they may be talking to code
that is no longer the iROM.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .config import BootConfig
from .errors import ValidationError
from .session import BootSession, ProgressCallback
from .terminal import TerminalBridge
from .transport import BaseTransport

__all__ = ['Command', 'parse_number', 'parse_sequence', 'CommandRunner', 'COMMAND_NAMES']

log = logging.getLogger('imx21_boot.commands')

# name -> (required argument count, optional numeric argument)
_GRAMMAR = {
    "sync":     (0, False),
    "set":      (3, False),
    "download": (2, False),
    "run":      (0, True),
    "setup":    (0, False),
    "baud":     (0, True),
    "terminal": (0, True),
}

COMMAND_NAMES = tuple(_GRAMMAR)

# Commands that sync on their own when the session is not synced yet
AUTO_SYNC = frozenset({"set", "download", "setup", "baud"})


@dataclass
class Command:
    """One parsed command with its raw arguments."""
    name: str
    args: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return " ".join([self.name] + self.args)


def parse_number(text: str) -> int:
    """Parse an integer the way strtoul(..., 0) would: 0x.., 0o.., 0b.., decimal."""
    text = text.strip()
    try:
        if len(text) > 1 and text[0] == "0" and text[1].isdigit():
            return int(text, 8)
        return int(text, 0)
    except ValueError:
        raise ValidationError(f"Not a number: {text!r}")


def _optional_number(text: str) -> Optional[int]:
    try:
        value = parse_number(text)
    except ValidationError:
        return None
    return value or None


def parse_sequence(tokens: Sequence[str]) -> List[Command]:
    """
    Split argv-style tokens into Commands.

    Optional arguments are only taken when the next token is a non-zero
    number, so `run download ...` leaves `download` as the next command.
    A `0` is not taken either and is then rejected as an unknown command.
    """
    commands: List[Command] = []
    i = 0
    while i < len(tokens):
        name = tokens[i]
        if name not in _GRAMMAR:
            raise ValidationError(f"Unknown command {name}")
        required, optional = _GRAMMAR[name]
        if len(tokens) - (i + 1) < required:
            raise ValidationError(f"Not enough parameters for {name}")
        args = list(tokens[i + 1:i + 1 + required])
        i += 1 + required
        if optional and i < len(tokens) and _optional_number(tokens[i]) is not None:
            args.append(tokens[i])
            i += 1
        commands.append(Command(name, args))
    return commands


class CommandRunner:
    """Runs parsed commands against one session, stopping at the first error."""

    def __init__(self, session: BootSession,
                 terminal_factory: Optional[Callable[[BaseTransport], TerminalBridge]] = None,
                 progress_factory: Optional[Callable[[str], ProgressCallback]] = None):
        self.session = session
        self.config: BootConfig = session.config
        self.terminal_factory = terminal_factory or TerminalBridge
        self.progress_factory = progress_factory
        self.completed: List[Command] = []

    def run(self, commands: Sequence[Command]) -> List[Command]:
        """Execute in order. Returns the commands that completed."""
        for command in commands:
            log.debug(f"> {command}")
            if command.name in AUTO_SYNC:
                self.session.ensure_synced()
            handler = getattr(self, f"_do_{command.name}")
            handler(*command.args)
            self.completed.append(command)
            if command.name == "terminal":
                break
        return self.completed

    # -------------------------------------------------------------------------
    # Command handlers
    # -------------------------------------------------------------------------

    def _do_sync(self) -> None:
        self.session.sync()

    def _do_set(self, address: str, width: str, value: str) -> None:
        self.session.set_register(parse_number(address), parse_number(width),
                                  parse_number(value))

    def _do_download(self, path: str, address: str) -> None:
        progress = self.progress_factory(path) if self.progress_factory else None
        self.session.download_file(path, parse_number(address), progress)

    def _do_run(self, address: Optional[str] = None) -> None:
        self.session.run(_optional_number(address) if address else None)

    def _do_setup(self) -> None:
        self.session.setup_system()

    def _do_baud(self, rate: Optional[str] = None) -> None:
        self.session.change_baud(parse_number(rate) if rate else self.config.highspeed_baud)

    def _do_terminal(self, rate: Optional[str] = None) -> None:
        transport = self.session.transport
        transport.set_baud(parse_number(rate) if rate else self.config.terminal_baud)
        self.terminal_factory(transport).run()
