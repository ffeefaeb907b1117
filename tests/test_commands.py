"""
Command sequence tests: argv parsing and the strict execution pipeline.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from imx21_boot import constants as C
from imx21_boot.commands import Command, CommandRunner, parse_number, parse_sequence
from imx21_boot.config import BootConfig
from imx21_boot.errors import ProtocolMismatch, ResponseTimeout, ValidationError
from imx21_boot.packet import PacketCodec
from imx21_boot.session import BootSession
from imx21_boot.transport import LoopbackTransport

BAD_WORD = PacketCodec().encode_word(0x12345678)


class FakeTerminal:
    """Stands in for TerminalBridge; records the transport it was given."""
    created = []

    def __init__(self, transport):
        self.transport = transport
        FakeTerminal.created.append(self)

    def run(self):
        return 0


@pytest.fixture
def loop():
    return LoopbackTransport()


@pytest.fixture
def runner(loop):
    FakeTerminal.created = []
    session = BootSession(loop, BootConfig(read_timeout_ms=20))
    return CommandRunner(session, terminal_factory=FakeTerminal)


def names(commands):
    return [c.name for c in commands]


# =============================================================================
#  Parsing
# =============================================================================

class TestParseNumber:

    @pytest.mark.parametrize("text,value", [
        ("0", 0),
        ("42", 42),
        ("0x10", 16),
        ("0XC0000000", 0xC0000000),
        ("010", 8),
        ("0o17", 15),
        ("0b101", 5),
        (" 115200 ", 115200),
    ])
    def test_accepted(self, text, value):
        assert parse_number(text) == value

    @pytest.mark.parametrize("text", ["", "abc", "0xZZ", "09", "download"])
    def test_rejected(self, text):
        with pytest.raises(ValidationError, match="Not a number"):
            parse_number(text)


class TestParseSequence:

    def test_single(self):
        assert parse_sequence(["sync"]) == [Command("sync")]

    def test_set_takes_three(self):
        cmds = parse_sequence(["set", "0x10000000", "32", "0x00040304", "sync"])
        assert cmds == [Command("set", ["0x10000000", "32", "0x00040304"]), Command("sync")]

    def test_typical_boot_line(self):
        tokens = ["baud", "setup", "download", "zImage", "0xc0008000", "run", "terminal"]
        cmds = parse_sequence(tokens)
        assert names(cmds) == ["baud", "setup", "download", "run", "terminal"]
        assert cmds[2].args == ["zImage", "0xc0008000"]
        assert cmds[3].args == []

    def test_optional_numbers_consumed(self):
        cmds = parse_sequence(["baud", "460800", "run", "0xc0008000", "terminal", "115200"])
        assert [c.args for c in cmds] == [["460800"], ["0xc0008000"], ["115200"]]

    def test_optional_skips_command_words(self):
        """`run download ...` does not eat the next command."""
        cmds = parse_sequence(["run", "download", "a.bin", "0xc0000000"])
        assert names(cmds) == ["run", "download"]

    def test_zero_is_not_consumed(self):
        with pytest.raises(ValidationError, match="Unknown command 0"):
            parse_sequence(["run", "0"])

    def test_unknown_command(self):
        with pytest.raises(ValidationError, match="Unknown command bogus"):
            parse_sequence(["sync", "bogus"])

    @pytest.mark.parametrize("tokens", [
        ["set", "0x10000000", "32"],
        ["download", "a.bin"],
        ["sync", "set"],
    ])
    def test_missing_parameters(self, tokens):
        with pytest.raises(ValidationError, match="Not enough parameters"):
            parse_sequence(tokens)

    def test_empty(self):
        assert parse_sequence([]) == []

    def test_command_str(self):
        assert str(Command("download", ["a.bin", "0xc0000000"])) == "download a.bin 0xc0000000"


# =============================================================================
#  Execution
# =============================================================================

class TestAutoSync:

    def test_set_syncs_first(self, runner, loop):
        runner.run(parse_sequence(["set", "0x10000000", "32", "1"]))
        assert [p.opcode for p in loop.packets] == [C.OP_SYNC, C.OP_SET_REGISTER]

    def test_sync_only_once(self, runner, loop):
        runner.run(parse_sequence(["set", "0x10000000", "32", "1", "setup"]))
        syncs = [p for p in loop.packets if p.opcode == C.OP_SYNC]
        assert len(syncs) == 1

    def test_explicit_sync_then_set(self, runner, loop):
        runner.run(parse_sequence(["sync", "set", "0x10000000", "32", "1"]))
        assert [p.opcode for p in loop.packets] == [C.OP_SYNC, C.OP_SET_REGISTER]

    def test_run_never_syncs_first(self, runner, loop):
        runner.run(parse_sequence(["run", "0xc0000000"]))
        first = loop.packets[0]
        assert first.opcode == C.OP_DOWNLOAD and first.end == C.RUN_MARKER

    def test_terminal_never_syncs(self, runner, loop):
        runner.run(parse_sequence(["terminal"]))
        assert loop.packets == []


class TestPipeline:

    def test_full_boot(self, runner, loop, tmp_path):
        image = tmp_path / "test.bin"
        image.write_bytes(bytes(5000))
        done = runner.run(parse_sequence(
            ["setup", "download", str(image), "0xc0000000", "run"]))
        assert names(done) == ["setup", "download", "run"]
        assert loop.registers == C.SDRAM_INIT_SEQUENCE
        assert loop.run_addresses == [0xC0000000]

    def test_stops_at_first_failure(self, runner, loop):
        loop.register_faults[0x10000004] = BAD_WORD * 2
        seq = parse_sequence(["set", "0x10000000", "32", "1",
                              "set", "0x10000004", "32", "2",
                              "set", "0x10000008", "32", "3"])
        with pytest.raises(ProtocolMismatch):
            runner.run(seq)
        assert names(runner.completed) == ["set"]
        assert [r[0] for r in loop.registers] == [0x10000000, 0x10000004]

    def test_failed_auto_sync_stops(self, runner, loop):
        loop.overrides['sync'] = b""
        with pytest.raises(ResponseTimeout):
            runner.run(parse_sequence(["setup"]))
        assert loop.registers == []
        assert runner.completed == []

    def test_run_without_target(self, runner, loop):
        with pytest.raises(ValidationError, match="No address"):
            runner.run(parse_sequence(["run"]))
        assert loop.tx_log == []

    def test_bad_set_value(self, runner, loop):
        with pytest.raises(ValidationError, match="Not a number"):
            runner.run(parse_sequence(["set", "0x10000000", "32", "xyz"]))
        assert loop.registers == []

    def test_bad_set_width(self, runner, loop):
        with pytest.raises(ValidationError, match="Illegal register size"):
            runner.run(parse_sequence(["set", "0x10000000", "12", "1"]))


class TestBaudAndTerminal:

    def test_baud_default(self, runner, loop):
        runner.run(parse_sequence(["baud"]))
        assert loop.registers[-2:] == [
            (C.REG_UART1_UBIR, 32, C.DEFAULT_HIGHSPEED // 100 - 1),
            (C.REG_UART1_UBMR, 32, C.UBMR_VALUE),
        ]
        assert loop.baud_history == [C.DEFAULT_HIGHSPEED]

    def test_baud_explicit(self, runner, loop):
        runner.run(parse_sequence(["baud", "460800"]))
        assert loop.registers[-2] == (C.REG_UART1_UBIR, 32, 4607)
        assert loop.baud_history == [460800]

    def test_terminal_default_baud(self, runner, loop):
        runner.run(parse_sequence(["terminal"]))
        assert loop.baud_history == [C.DEFAULT_TERMBAUD]
        assert len(FakeTerminal.created) == 1
        assert FakeTerminal.created[0].transport is loop

    def test_terminal_explicit_baud(self, runner, loop):
        runner.run(parse_sequence(["terminal", "115200"]))
        assert loop.baud_history == [115200]

    def test_terminal_ends_sequence(self, runner, loop):
        done = runner.run(parse_sequence(["terminal", "sync"]))
        assert names(done) == ["terminal"]
        assert loop.packets == []


def test_download_reports_progress(loop, tmp_path):
    image = tmp_path / "kernel.bin"
    image.write_bytes(bytes(9000))
    labels, calls = [], []

    def factory(label):
        labels.append(label)
        return lambda done, total: calls.append((done, total))

    session = BootSession(loop, BootConfig(read_timeout_ms=20))
    CommandRunner(session, progress_factory=factory).run(
        parse_sequence(["download", str(image), "0xc0000000"]))
    assert labels == [str(image)]
    assert calls == [(4096, 9000), (8192, 9000), (9000, 9000)]
    assert session.last_entry_address == 0xC0000000


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
