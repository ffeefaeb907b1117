"""
SerialTransport tests over a pseudo-terminal.

The pty slave is opened by pyserial like a real USB-serial port; the
test plays the board on the master side.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading
import time

import pytest

pty = pytest.importorskip("pty")

import serial
from imx21_boot import constants as C
from imx21_boot.config import BootConfig
from imx21_boot.errors import ResponseTimeout, TransportError
from imx21_boot.packet import PacketCodec
from imx21_boot.session import BootSession
from imx21_boot.transport import SerialTransport

CODEC = PacketCodec()


def read_exactly(fd, count, timeout=2.0):
    """Read `count` bytes from the master side or give up."""
    data = b""
    deadline = time.monotonic() + timeout
    while len(data) < count and time.monotonic() < deadline:
        data += os.read(fd, count - len(data))
    return data


@pytest.fixture
def board():
    """(transport, master_fd): an open SerialTransport on a fresh pty."""
    master, slave = pty.openpty()
    transport = SerialTransport(os.ttyname(slave), C.DEFAULT_BAUD, timeout_ms=100)
    transport.open()
    yield transport, master
    transport.close()
    os.close(slave)
    os.close(master)


class TestExchange:

    def test_sync_round_trip(self, board):
        transport, master = board
        seen = {}

        def answer():
            seen["packet"] = read_exactly(master, C.PACKET_SIZE)
            os.write(master, CODEC.encode_word(C.SYNC_OK))

        responder = threading.Thread(target=answer)
        responder.start()
        session = BootSession(transport, BootConfig(read_timeout_ms=1000))
        session.sync()
        responder.join(2.0)
        assert session.synced
        assert seen["packet"] == b"\x05\x05" + bytes(14)

    def test_silent_board_reads_nothing(self, board):
        transport, _ = board
        start = time.monotonic()
        assert transport.read(4, 100) == b""
        assert time.monotonic() - start >= 0.09

    def test_short_read(self, board):
        transport, master = board
        os.write(master, b"\xF0\xF0")
        assert transport.read(4, 100) == b"\xF0\xF0"

    def test_silent_board_times_out_session(self, board):
        transport, _ = board
        session = BootSession(transport, BootConfig(read_timeout_ms=50))
        with pytest.raises(ResponseTimeout):
            session.sync()

    def test_read_timeout_follows_call(self, board):
        transport, _ = board
        transport.read(1, 30)
        assert transport._serial.timeout == pytest.approx(0.03)
        transport.read(1)
        assert transport._serial.timeout == pytest.approx(0.1)


class TestReceivePath:

    def test_read_some_keeps_timeout(self, board):
        """Queued bytes are drained without touching ser.timeout."""
        transport, master = board
        os.write(master, b"hello world")
        got = b""
        deadline = time.monotonic() + 2.0
        while len(got) < 11 and time.monotonic() < deadline:
            got += transport.read_some(100)
            assert transport._serial.timeout == pytest.approx(0.1)
        assert got == b"hello world"

    def test_read_some_idle(self, board):
        transport, _ = board
        assert transport.read_some(20) == b""

    def test_subscription_delivers_burst(self, board):
        transport, master = board
        got = bytearray()
        done = threading.Event()

        def handler(data):
            got.extend(data)
            if len(got) >= 11:
                done.set()

        sub = transport.subscribe(handler, poll_ms=20)
        try:
            os.write(master, b"hello world")
            assert done.wait(2.0)
        finally:
            sub.cancel()
        assert bytes(got) == b"hello world"
        assert sub.error is None

    def test_bytes_available(self, board):
        transport, master = board
        os.write(master, b"abc")
        deadline = time.monotonic() + 2.0
        while transport.bytes_available < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert transport.bytes_available == 3


class TestBaud:

    def test_set_baud_highspeed(self, board):
        transport, _ = board
        transport.set_baud(C.DEFAULT_HIGHSPEED)
        assert transport.baud == C.DEFAULT_HIGHSPEED
        assert transport._serial.baudrate == C.DEFAULT_HIGHSPEED

    def test_set_baud_rejects_bad_rate(self, board):
        transport, _ = board
        with pytest.raises(TransportError, match="Unable to set"):
            transport.set_baud(-1)
        assert transport.baud == C.DEFAULT_BAUD


class TestErrors:

    def test_read_failure_maps(self, board, monkeypatch):
        transport, _ = board

        def broken(*args):
            raise serial.SerialException("device reports readiness but returned no data")

        monkeypatch.setattr(transport._serial, "read", broken)
        with pytest.raises(TransportError, match="Read failed"):
            transport.read(4)

    def test_write_failure_maps(self, board, monkeypatch):
        transport, _ = board

        def broken(*args):
            raise serial.SerialTimeoutException("Write timeout")

        monkeypatch.setattr(transport._serial, "write", broken)
        with pytest.raises(TransportError, match="Write failed"):
            transport.write(b"\x05\x05")

    def test_closed_port(self, board):
        transport, _ = board
        transport.close()
        assert not transport.is_open
        assert transport.bytes_available == 0
        with pytest.raises(TransportError, match="Port not open"):
            transport.read(4)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
