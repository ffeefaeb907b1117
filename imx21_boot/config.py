"""
Session configuration.

Plain dataclasses filled from command-line flags; there is no config file.
Response words are grouped in ResponseMagic because they are known to vary
between silicon revisions.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Tuple

from . import constants as C


@dataclass(frozen=True)
class ResponseMagic:
    """Words the iROM answers with on success."""
    sync_ok: int = C.SYNC_OK
    register_ack: Tuple[int, int] = (C.REGISTER_ACK_1, C.REGISTER_ACK_2)
    chunk_accepted: int = C.CHUNK_ACCEPTED
    run_accepted: int = C.RUN_ACCEPTED
    run_alive: Tuple[int, ...] = C.RUN_ALIVE


@dataclass
class BootConfig:
    """Everything a BootSession and the CLI need to talk to one board."""
    port: str = C.DEFAULT_PORT
    baud: int = C.DEFAULT_BAUD
    highspeed_baud: int = C.DEFAULT_HIGHSPEED
    terminal_baud: int = C.DEFAULT_TERMBAUD
    read_timeout_ms: int = C.READ_TIMEOUT_MS
    chunk_size: int = C.CHUNK_SIZE
    big_endian_host: bool = sys.byteorder == "big"
    magic: ResponseMagic = field(default_factory=ResponseMagic)

    @property
    def read_timeout(self) -> float:
        """Read timeout in seconds."""
        return self.read_timeout_ms / 1000.0
