"""
Interactive pass-through terminal on the still-open boot port.

Handy for getting a shell after booting Linux on the board. Two paths run
at once:

  receive   transport reader thread -> user's output, verbatim
  forward   user's input, one byte at a time -> transport

The user's terminal is put in non-canonical, no-echo mode with signal keys
disabled, so escape sequences and ^C go to the board untouched. There is no
escape key: the bridge runs until the process is killed, or until the input
stream hits end-of-file when it is not a terminal.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import BinaryIO, Optional

from .transport import BaseTransport

log = logging.getLogger('imx21_boot.terminal')


class TerminalBridge:
    """Raw relay between the user's terminal and the transport."""

    def __init__(self, transport: BaseTransport,
                 stdin: Optional[BinaryIO] = None,
                 stdout: Optional[BinaryIO] = None,
                 poll_ms: int = 100):
        self.transport = transport
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.poll_ms = poll_ms
        self.received = 0
        self.forwarded = 0
        self._saved_attrs = None

    # -------------------------------------------------------------------------
    # User terminal mode
    # -------------------------------------------------------------------------

    def _tty_fd(self) -> Optional[int]:
        try:
            fd = self.stdin.fileno()
        except (AttributeError, OSError, ValueError):
            return None
        return fd if os.isatty(fd) else None

    def _enter_raw(self, fd: int) -> None:
        import termios

        self._saved_attrs = termios.tcgetattr(fd)
        attrs = termios.tcgetattr(fd)
        attrs[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
        attrs[6][termios.VMIN] = 1
        attrs[6][termios.VTIME] = 0
        termios.tcsetattr(fd, termios.TCSANOW, attrs)

    def _restore(self, fd: int) -> None:
        import termios

        if self._saved_attrs is not None:
            termios.tcsetattr(fd, termios.TCSANOW, self._saved_attrs)
            self._saved_attrs = None

    # -------------------------------------------------------------------------
    # Data paths
    # -------------------------------------------------------------------------

    def _on_receive(self, data: bytes) -> None:
        self.received += len(data)
        self.stdout.write(data)
        self.stdout.flush()

    def _read_key(self, fd: Optional[int]) -> bytes:
        if fd is not None:
            return os.read(fd, 1)
        return self.stdin.read(1)

    def run(self) -> int:
        """Relay until killed or input EOF. Returns bytes forwarded."""
        log.info("Interactive terminal:")
        fd = self._tty_fd()
        if fd is not None:
            self._enter_raw(fd)
        subscription = self.transport.subscribe(self._on_receive, self.poll_ms)
        try:
            while True:
                key = self._read_key(fd)
                if not key:
                    break
                self.transport.write(key)
                self.forwarded += 1
        finally:
            subscription.cancel()
            if fd is not None:
                self._restore(fd)
        log.debug(f"Terminal closed ({self.forwarded} bytes out, {self.received} in)")
        return self.forwarded
