"""
imx21_boot: i.MX21 iROM Serial Boot Manager
==============================================
Talks to the boot ROM of Freescale i.MX21 ARM SoCs over UART: ping it,
poke registers, initialize SDRAM, download an image, run it, speed up the
line, and drop into a pass-through terminal once the image is up.

Architecture:
    ┌───────────┐    ┌─────────────┐    ┌─────────────┐    ┌───────────┐
    │ commands  │───>│   session   │───>│   packet    │───>│ transport │
    │ (argv seq)│    │ (protocol)  │    │ (16-byte    │    │ (pyserial │
    └───────────┘    └─────────────┘    │  codec)     │    │  loopback)│
          │                             └─────────────┘    └───────────┘
          │          ┌─────────────┐                             ▲
          └─────────>│  terminal   │─────────────────────────────┘
                     │ (raw relay) │
                     └─────────────┘

    - packet.py:    CommandPacket + PacketCodec (host byte-order aware)
    - session.py:   BootSession: sync / set / setup / download / run / baud
    - terminal.py:  TerminalBridge: reader thread + raw keyboard forwarder
    - commands.py:  argv command list -> strict pipeline
    - transport.py: SerialTransport (pyserial), LoopbackTransport (simulated iROM)
"""

__version__ = "0.3.0"

from .config import BootConfig, ResponseMagic
from .errors import (
    BootError,
    ProtocolMismatch,
    ResponseTimeout,
    TransportError,
    ValidationError,
)
from .packet import CommandPacket, PacketCodec
from .session import BootSession
from .terminal import TerminalBridge
from .transport import BaseTransport, LoopbackTransport, SerialTransport
from .commands import Command, CommandRunner, parse_sequence
