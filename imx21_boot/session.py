"""
iROM Protocol Session
======================

Request/response exchanges with the i.MX21 boot ROM over a Transport:

    sync()                                  ping the iROM, expect F0F0F0F0
    set_register(addr, width, value)        single write, two-word ack
    setup_system()                          SDRAM controller init recipe
    download(source, size, addr)            chunked image download
    run(addr=None)                          jump to code, confirm it is alive
    change_baud(rate)                       reprogram UART1 + local port

Every exchange writes one packet and then blocks on a bounded read, so a
silent board fails fast. Nothing is retried and nothing is rolled back: the
first failure raises and the caller decides whether to continue.

The session owns two pieces of state: `synced` (a SYNC handshake has
succeeded) and `last_entry_address` (base address of the last complete
download, the default RUN target).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from . import constants as C
from .config import BootConfig
from .errors import ProtocolMismatch, ResponseTimeout, TransportError, ValidationError
from .packet import (
    CommandPacket,
    PacketCodec,
    download_packet,
    run_packet,
    set_register_packet,
    sync_packet,
)
from .transport import BaseTransport

log = logging.getLogger('imx21_boot.session')

ProgressCallback = Callable[[int, int], None]
ByteSource = Union[BinaryIO, bytes, bytearray, memoryview]


class BootSession:
    """
    One conversation with the iROM, bound to an open transport.

    Usage:
        transport = SerialTransport('/dev/ttyUSB0')
        transport.open()
        session = BootSession(transport)
        session.sync()
        session.setup_system()
        session.download_file('zImage', 0xC0008000)
        session.run()
    """

    def __init__(self, transport: BaseTransport, config: Optional[BootConfig] = None):
        self.transport = transport
        self.config = config or BootConfig()
        self.codec = PacketCodec(self.config.big_endian_host)
        self.magic = self.config.magic
        self.synced = False
        self.last_entry_address: Optional[int] = None

    # -------------------------------------------------------------------------
    # Low-level exchange helpers
    # -------------------------------------------------------------------------

    def _send(self, packet: CommandPacket) -> None:
        log.debug(f"Send {packet!r}")
        self.transport.write(self.codec.encode(packet))

    def _read_words(self, count: int, operation: str, **context) -> tuple:
        """Read `count` response words or raise ResponseTimeout."""
        expected = 4 * count
        data = self.transport.read(expected, self.config.read_timeout_ms)
        if len(data) != expected:
            raise ResponseTimeout(operation, expected, len(data), **context)
        return self.codec.decode_words(data)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def sync(self) -> None:
        """Ping the iROM. Raises on timeout or an unexpected answer."""
        log.info("Synchronizing...")
        self.synced = False
        self._send(sync_packet())
        (response,) = self._read_words(1, "sync")
        if response != self.magic.sync_ok:
            raise ProtocolMismatch("sync", [response])
        self.synced = True
        log.info("Sync ok")

    def ensure_synced(self) -> None:
        """Sync unless an earlier handshake already succeeded."""
        if not self.synced:
            self.sync()

    def set_register(self, address: int, width: int, value: int,
                     ignore_failure: bool = False) -> bool:
        """
        Write `value` to `address` with a `width`-bit access.

        Returns True when the iROM acknowledged the write. With
        ignore_failure a missing or wrong ack is logged and False is
        returned instead of raising; some registers never ack reliably.
        """
        if width not in C.REGISTER_WIDTHS:
            raise ValidationError(f"Illegal register size {width}", "set_register",
                                  address=address)

        log.info(f"Write 0x{value:08x} ({width}) to 0x{address:08x}")
        self._send(set_register_packet(address, width, value))
        try:
            words = self._read_words(2, "set_register", address=address)
            if words != tuple(self.magic.register_ack):
                raise ProtocolMismatch("set_register", words, address=address)
        except (ResponseTimeout, ProtocolMismatch) as e:
            if ignore_failure:
                log.info(f"<ignored> {e}")
                return False
            raise
        log.debug(f"0x{address:08x} ok")
        return True

    def setup_system(self) -> None:
        """Run the SDRAM controller init recipe; stops at the first bad write."""
        log.info("Initializing SDRAM")
        for address, width, value in C.SDRAM_INIT_SEQUENCE:
            self.set_register(address, width, value)
        log.info("SDRAM initialized")

    def download(self, source: ByteSource, total_size: int, base_address: int,
                 progress: Optional[ProgressCallback] = None) -> None:
        """
        Stream `total_size` bytes from `source` to `base_address`.

        Each chunk is announced with a DOWNLOAD packet and its payload is
        only written once the iROM has answered CHUNK_ACCEPTED. The entry
        address is committed after the last chunk.
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            view = memoryview(source)
            read_chunk = lambda offset, size: view[offset:offset + size].tobytes()
        else:
            read_chunk = lambda offset, size: source.read(size)

        log.info(f"Downloading {total_size} bytes to 0x{base_address:08x}")
        chunk_size = self.config.chunk_size
        offset = 0
        while offset < total_size:
            size = min(chunk_size, total_size - offset)
            address = base_address + offset
            self._send(download_packet(address, size))

            (response,) = self._read_words(1, "download", address=address,
                                           offset=offset, size=size)
            if response != self.magic.chunk_accepted:
                raise ProtocolMismatch("download", [response], address=address,
                                       offset=offset, size=size)

            data = read_chunk(offset, size)
            if len(data) != size:
                raise TransportError(f"Source ended early ({len(data)}/{size} bytes)",
                                     "download", address=address, offset=offset, size=size)
            self.transport.write(data)

            offset += size
            if progress:
                progress(offset, total_size)

        self.last_entry_address = base_address
        log.info("Download complete")

    def download_file(self, path: Union[str, Path], base_address: int,
                      progress: Optional[ProgressCallback] = None) -> int:
        """Download a binary image file. Returns its size in bytes."""
        path = Path(path)
        try:
            f = open(path, "rb")
        except OSError as e:
            raise TransportError(f"Unable to open binary image {path}: {e.strerror}",
                                 "download", address=base_address)
        with f:
            size = path.stat().st_size
            log.info(f"Image {path.name}: {size} bytes")
            self.download(f, size, base_address, progress)
        return size

    def run(self, address: Optional[int] = None) -> int:
        """
        Jump to `address` (default: the last downloaded image).

        After the RUN ack a second SYNC must come back with one of the
        post-run words, showing the program started and the iROM stub went
        idle. Returns the address that was called.
        """
        if address is None:
            address = self.last_entry_address
        if address is None:
            raise ValidationError("No address specified and nothing downloaded", "run")

        log.info(f"Calling code at 0x{address:08x}...")
        self._send(run_packet(address))
        (response,) = self._read_words(1, "run", address=address)
        if response != self.magic.run_accepted:
            raise ProtocolMismatch("run", [response], address=address)

        self._send(sync_packet())
        (response,) = self._read_words(1, "run", address=address)
        if response not in self.magic.run_alive:
            raise ProtocolMismatch("run", [response], address=address)
        log.info(f"Code at 0x{address:08x} running (0x{response:08x})")
        return address

    def change_baud(self, rate: int) -> None:
        """
        Reprogram the iROM UART divisor, then follow with the local port.

        The UBMR write is sent with ignore_failure: its ack is often garbled
        because the line rate changes right after it.
        """
        if rate <= 0:
            raise ValidationError(f"Illegal baud rate {rate}", "baud")
        log.info(f"Changing baud rate to {rate}...")
        self.set_register(C.REG_UART1_UBIR, 32, rate // 100 - 1)
        self.set_register(C.REG_UART1_UBMR, 32, C.UBMR_VALUE, ignore_failure=True)
        self.transport.set_baud(rate)
        log.info("Baud rate change done")
