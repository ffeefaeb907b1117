"""
Transport Layer (Serial / Loopback)
====================================

The session only needs a duplex byte channel:

    write(data)                -> int
    read(count, timeout_ms)    -> bytes   (short on timeout)
    set_baud(rate)

plus subscribe(handler) for the terminal's receive path, which delivers
incoming bytes to a callback from a reader thread.

SerialTransport wraps pyserial. LoopbackTransport is an in-memory i.MX21
boot ROM for running sequences without hardware.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

import serial

from . import constants as C
from .config import ResponseMagic
from .errors import TransportError
from .packet import CommandPacket, PacketCodec, hexdump

log = logging.getLogger('imx21_boot.transport')

ReceiveHandler = Callable[[bytes], None]


# =============================================================================
# Base transport + receive subscription
# =============================================================================

class BaseTransport:
    """Abstract base for all iROM transports."""

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def read(self, count: int, timeout_ms: Optional[int] = None) -> bytes:
        raise NotImplementedError

    def set_baud(self, rate: int) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    @property
    def bytes_available(self) -> int:
        raise NotImplementedError

    def read_some(self, timeout_ms: int) -> bytes:
        """Wait up to timeout_ms for one byte, then drain whatever else is queued."""
        first = self.read(1, timeout_ms)
        if not first:
            return b""
        pending = self.bytes_available
        if pending:
            return first + self.read(pending, 0)
        return first

    def subscribe(self, handler: ReceiveHandler,
                  poll_ms: int = 100) -> ReceiveSubscription:
        """Deliver incoming bytes to `handler` from a reader thread."""
        sub = ReceiveSubscription(self, handler, poll_ms)
        sub.start()
        return sub

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ReceiveSubscription(threading.Thread):
    """
    Reader thread delivering received bytes to a handler (the SIGIO path).

    Reads only; the owner keeps writing from its own thread. Bytes are
    handed to the handler in arrival order.
    """

    def __init__(self, transport: BaseTransport, handler: ReceiveHandler,
                 poll_ms: int = 100):
        super().__init__(name="imx21-rx", daemon=True)
        self.transport = transport
        self.handler = handler
        self.poll_ms = poll_ms
        self.error: Optional[BaseException] = None
        self._cancelled = threading.Event()

    def run(self):
        while not self._cancelled.is_set():
            try:
                data = self.transport.read_some(self.poll_ms)
            except TransportError as e:
                log.error(f"Read error: {e}")
                self.error = e
                return
            if not data:
                continue
            try:
                self.handler(data)
            except OSError as e:
                log.error(f"Receive handler failed: {e}")
                self.error = e
                return

    def cancel(self, timeout: Optional[float] = 1.0) -> None:
        """Stop delivering and wait for the reader to exit."""
        self._cancelled.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)


# =============================================================================
# PySerial transport
# =============================================================================

class SerialTransport(BaseTransport):
    """PySerial (tty / VCP) transport, 8N1, no flow control."""

    def __init__(self, port: str = C.DEFAULT_PORT, baud: int = C.DEFAULT_BAUD,
                 timeout_ms: int = C.READ_TIMEOUT_MS):
        self.port = port
        self.baud = baud
        self.timeout_ms = timeout_ms
        self._serial: Optional[serial.Serial] = None

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout_ms / 1000.0,
                write_timeout=5.0,
            )
            self._serial.reset_input_buffer()
            log.info(f"Opened {self.port} @ {self.baud} baud (8N1)")
        except serial.SerialException as e:
            raise TransportError(f"Unable to open port {self.port}: {e}", "open")

    def close(self) -> None:
        if self._serial and self._serial.is_open:
            self._serial.close()
            log.info(f"Closed {self.port}")
        self._serial = None

    def _require_open(self) -> serial.Serial:
        if not self._serial or not self._serial.is_open:
            raise TransportError("Port not open", "io")
        return self._serial

    def write(self, data: bytes) -> int:
        ser = self._require_open()
        log.debug(f"TX: {hexdump(bytes(data[:32]))}")
        try:
            written = ser.write(data)
            ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write failed: {e}", "write")
        return written

    def read(self, count: int, timeout_ms: Optional[int] = None) -> bytes:
        ser = self._require_open()
        timeout = (self.timeout_ms if timeout_ms is None else timeout_ms) / 1000.0
        try:
            if ser.timeout != timeout:
                ser.timeout = timeout
            data = bytes(ser.read(count))
        except serial.SerialException as e:
            raise TransportError(f"Read failed: {e}", "read")
        if data:
            log.debug(f"RX: {hexdump(data[:32])}")
        return data

    def read_some(self, timeout_ms: int) -> bytes:
        """Wait for one byte, then take what the driver already holds.

        ser.timeout is left alone: pyserial reconfigures the port on every
        timeout change.
        """
        first = self.read(1, timeout_ms)
        if not first:
            return b""
        ser = self._require_open()
        try:
            pending = ser.in_waiting
            rest = bytes(ser.read(pending)) if pending else b""
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read failed: {e}", "read")
        if rest:
            log.debug(f"RX: {hexdump(rest[:32])}")
        return first + rest

    def set_baud(self, rate: int) -> None:
        ser = self._require_open()
        try:
            ser.baudrate = rate
            ser.reset_input_buffer()
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Unable to set {rate} baud: {e}", "baud")
        self.baud = rate
        log.info(f"{self.port} now @ {rate} baud")

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def bytes_available(self) -> int:
        if self._serial and self._serial.is_open:
            return self._serial.in_waiting
        return 0


# =============================================================================
# Loopback transport (simulated boot ROM)
# =============================================================================

class LoopbackTransport(BaseTransport):
    """
    In-memory loopback for testing without hardware.
    Simulates an i.MX21 iROM answering the serial boot protocol.

    Records everything the host sends (`tx_log`), register writes
    (`registers` as (address, width, value) tuples), downloaded memory
    (`memory`, address -> bytes), RUN targets and baud changes.

    Fault injection:
        overrides       reply kind -> raw bytes sent instead of the good reply
                        (kinds: 'sync', 'register', 'chunk', 'run', 'alive');
                        b"" means stay silent
        register_faults register address -> raw reply for that address only
        chunk_faults    chunk index -> raw reply for that download chunk

    Once a launched program has answered the post-RUN sync, the UART belongs
    to that program: further writes land in `console_input` (echoed back when
    `echo_console` is set) instead of being parsed as packets.
    """

    def __init__(self, magic: Optional[ResponseMagic] = None,
                 big_endian_host: Optional[bool] = None):
        self.magic = magic or ResponseMagic()
        self.codec = PacketCodec() if big_endian_host is None else PacketCodec(big_endian_host)
        self.baud = C.DEFAULT_BAUD
        self.baud_history: List[int] = []
        self.tx_log: List[bytes] = []
        self.packets: List[CommandPacket] = []
        self.registers: List[Tuple[int, int, int]] = []
        self.memory: Dict[int, bytes] = {}
        self.run_addresses: List[int] = []
        self.running = False
        self.console = False
        self.echo_console = False
        self.console_input = bytearray()
        self.overrides: Dict[str, bytes] = {}
        self.register_faults: Dict[int, bytes] = {}
        self.chunk_faults: Dict[int, bytes] = {}
        self.chunks_seen = 0
        self._opened = False
        self._inbox = bytearray()
        self._payload_addr = 0
        self._payload_left = 0
        self._payload = bytearray()
        self._rx = bytearray()
        self._cond = threading.Condition()

    def open(self) -> None:
        self._opened = True
        log.info("Loopback transport opened (simulation mode)")

    def close(self) -> None:
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def bytes_available(self) -> int:
        with self._cond:
            return len(self._rx)

    def write(self, data: bytes) -> int:
        self.tx_log.append(bytes(data))
        if self.console:
            self.console_input.extend(data)
            if self.echo_console:
                self.feed(data)
            return len(data)
        self._inbox.extend(data)
        self._process()
        return len(data)

    def read(self, count: int, timeout_ms: Optional[int] = None) -> bytes:
        wait = (C.READ_TIMEOUT_MS if timeout_ms is None else timeout_ms) / 1000.0
        with self._cond:
            if len(self._rx) < count and wait > 0:
                self._cond.wait_for(lambda: len(self._rx) >= count, timeout=wait)
            result = bytes(self._rx[:count])
            del self._rx[:count]
        return result

    def set_baud(self, rate: int) -> None:
        self.baud = rate
        self.baud_history.append(rate)
        with self._cond:
            self._rx.clear()

    def attach_console(self, echo: bool = False) -> None:
        """Hand the line to a running program without a RUN handshake."""
        self.console = True
        self.echo_console = echo

    def feed(self, data: bytes) -> None:
        """Queue bytes as if the board had sent them (console output)."""
        with self._cond:
            self._rx.extend(data)
            self._cond.notify_all()

    # -------------------------------------------------------------------------
    # Boot ROM simulation
    # -------------------------------------------------------------------------

    def _reply(self, kind: str, *words: int, fault: Optional[bytes] = None) -> None:
        if fault is None:
            fault = self.overrides.get(kind)
        if fault is not None:
            self.feed(fault)
        else:
            self.feed(b"".join(self.codec.encode_word(w) for w in words))

    def _process(self) -> None:
        while self._inbox:
            if self._payload_left:
                take = bytes(self._inbox[:self._payload_left])
                del self._inbox[:len(take)]
                self._payload.extend(take)
                self._payload_left -= len(take)
                if not self._payload_left:
                    self.memory[self._payload_addr] = bytes(self._payload)
                    self._payload.clear()
                continue
            if len(self._inbox) < C.PACKET_SIZE:
                return
            raw = bytes(self._inbox[:C.PACKET_SIZE])
            del self._inbox[:C.PACKET_SIZE]
            self._handle(self.codec.decode(raw))

    def _handle(self, pkt: CommandPacket) -> None:
        self.packets.append(pkt)
        if pkt.opcode == C.OP_SYNC:
            if self.running:
                self._reply('alive', self.magic.run_alive[-1])
                self.console = 'alive' not in self.overrides
            else:
                self._reply('sync', self.magic.sync_ok)
        elif pkt.opcode == C.OP_SET_REGISTER:
            self.registers.append((pkt.address, pkt.width, pkt.value))
            self._reply('register', *self.magic.register_ack,
                        fault=self.register_faults.get(pkt.address))
        elif pkt.opcode == C.OP_DOWNLOAD and pkt.end == C.RUN_MARKER:
            self.run_addresses.append(pkt.address)
            self._reply('run', self.magic.run_accepted)
            self.running = 'run' not in self.overrides
        elif pkt.opcode == C.OP_DOWNLOAD:
            index = self.chunks_seen
            self.chunks_seen += 1
            fault = self.chunk_faults.get(index, self.overrides.get('chunk'))
            self._reply('chunk', self.magic.chunk_accepted, fault=fault)
            if fault is None:
                self._payload_addr = pkt.address
                self._payload_left = pkt.length
        else:
            log.warning(f"Loopback: unknown opcode 0x{pkt.opcode:04X}")
