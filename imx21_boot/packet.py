"""
iROM Command Packet Codec
==========================

Every request to the i.MX21 boot ROM is one fixed 16-byte packet:

  [OPCODE:2] [ADDRESS:4] [WIDTH:1] [LENGTH:4] [VALUE:4] [END:1]

  OPCODE   = 0x0505 sync, 0x0202 set register, 0x0404 download/run
  ADDRESS  = target address                      (big-endian on the wire)
  WIDTH    = register access width in bits (8/16/32), 0 otherwise
  LENGTH   = download payload length in bytes    (big-endian on the wire)
  VALUE    = set-register immediate              (big-endian on the wire)
  END      = 0, or 0xAA to turn a download packet into a RUN request

No padding anywhere. The 32-bit fields are byte-swapped on a little-endian
host before packing in host order, which is how the vendor tools lay them
out. Responses are not packets; they are raw 32-bit words compared in host
order.
"""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass

from .constants import (
    OP_DOWNLOAD,
    OP_SET_REGISTER,
    OP_SYNC,
    RUN_MARKER,
)

__all__ = ['CommandPacket', 'PacketCodec', 'sync_packet', 'set_register_packet',
           'download_packet', 'run_packet', 'hexdump']

# opcode, address, width, length, value, end; no alignment
_LAYOUT = "HIBIIB"


@dataclass
class CommandPacket:
    """One iROM request, fields in wire order."""
    opcode: int
    address: int = 0
    width: int = 0
    length: int = 0
    value: int = 0
    end: int = 0

    def __repr__(self) -> str:
        return (f"CommandPacket(op=0x{self.opcode:04X}, addr=0x{self.address:08X}, "
                f"width={self.width}, len={self.length}, value=0x{self.value:08X}, "
                f"end=0x{self.end:02X})")


class PacketCodec:
    """Packs CommandPackets for a given host byte order."""

    def __init__(self, big_endian_host: bool = sys.byteorder == "big"):
        self.big_endian_host = big_endian_host
        self._order = ">" if big_endian_host else "<"
        self._struct = struct.Struct(self._order + _LAYOUT)

    def normalize32(self, value: int) -> int:
        """Convert a 32-bit field between host and device order (self-inverse)."""
        value &= 0xFFFFFFFF
        if self.big_endian_host:
            return value
        return (((value & 0xFF) << 24) | ((value & 0xFF00) << 8)
                | ((value & 0xFF0000) >> 8) | ((value & 0xFF000000) >> 24))

    def encode(self, packet: CommandPacket) -> bytes:
        """Serialize to exactly PACKET_SIZE bytes."""
        return self._struct.pack(
            packet.opcode & 0xFFFF,
            self.normalize32(packet.address),
            packet.width & 0xFF,
            self.normalize32(packet.length),
            self.normalize32(packet.value),
            packet.end & 0xFF,
        )

    def decode(self, data: bytes) -> CommandPacket:
        """Inverse of encode(); used by the loopback boot ROM."""
        opcode, address, width, length, value, end = self._struct.unpack(data)
        return CommandPacket(
            opcode=opcode,
            address=self.normalize32(address),
            width=width,
            length=self.normalize32(length),
            value=self.normalize32(value),
            end=end,
        )

    def encode_word(self, word: int) -> bytes:
        """Raw 4-byte response word, as the device would send it."""
        return struct.pack(self._order + "I", word & 0xFFFFFFFF)

    def decode_word(self, data: bytes) -> int:
        """Read a raw 4-byte response word in host order."""
        return struct.unpack(self._order + "I", data)[0]

    def decode_words(self, data: bytes) -> tuple:
        """Split a response into consecutive host-order words."""
        count = len(data) // 4
        return struct.unpack(self._order + "I" * count, data[:count * 4])


# =============================================================================
# Packet builders
# =============================================================================

def sync_packet() -> CommandPacket:
    """Zero-filled SYNC request."""
    return CommandPacket(opcode=OP_SYNC)


def set_register_packet(address: int, width: int, value: int) -> CommandPacket:
    """SET-REGISTER request. Width is in bits and must already be validated."""
    return CommandPacket(opcode=OP_SET_REGISTER, address=address,
                         width=width, value=value)


def download_packet(address: int, length: int) -> CommandPacket:
    """Announce `length` payload bytes destined for `address`."""
    return CommandPacket(opcode=OP_DOWNLOAD, address=address, length=length)


def run_packet(address: int) -> CommandPacket:
    """Download opcode with the RUN marker and no payload."""
    return CommandPacket(opcode=OP_DOWNLOAD, address=address, end=RUN_MARKER)


# =============================================================================
# Hex dump helper
# =============================================================================

def hexdump(data: bytes, prefix: str = '') -> str:
    """Format bytes as hex string for logging."""
    if not data:
        return f"{prefix}<empty>"
    hex_str = ' '.join(f'{b:02X}' for b in data)
    return f"{prefix}[{len(data):3d}] {hex_str}"
