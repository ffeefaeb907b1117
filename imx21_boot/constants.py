"""
i.MX21 iROM Protocol Constants
===============================
Single source of truth for opcodes, response words, register addresses and
the SDRAM init recipe used by the session layer.

The iROM protocol is not very well specified. The response words below are
what an i.MX21 (mask 1.x) returns over UART1; other revisions may answer
with different values. Override them through config.ResponseMagic rather
than editing this file.

Sources:
  - i.MX21 Reference Manual, "Serial Boot" chapter
  - Freescale HAB Toolkit serial traces
  - imx21_meminit.txt (SDRAM init recipe)
"""

from typing import List, Tuple

# =============================================================================
# Packet layout
# =============================================================================
PACKET_SIZE = 16            # header(2) addr(4) width(1) len(4) value(4) end(1)

# Opcodes (16-bit, symmetric so host byte order does not matter)
OP_SYNC = 0x0505            # Ping / status query
OP_SET_REGISTER = 0x0202    # Single register/memory write
OP_DOWNLOAD = 0x0404        # Download chunk, or RUN when end == RUN_MARKER

RUN_MARKER = 0xAA           # Terminator byte marking a RUN request

# Legal SET-REGISTER access widths, in bits
REGISTER_WIDTHS = (8, 16, 32)

# =============================================================================
# Response words (raw 32-bit, host order)
# =============================================================================
SYNC_OK = 0xF0F0F0F0
REGISTER_ACK_1 = 0x56787856
REGISTER_ACK_2 = 0x128A8A12
CHUNK_ACCEPTED = 0x56787856
RUN_ACCEPTED = 0x56787856
RUN_ALIVE = (0x08888888, 0x88888888)

# =============================================================================
# Transfer / timing
# =============================================================================
CHUNK_SIZE = 4096           # Max payload per DOWNLOAD packet
READ_TIMEOUT_MS = 500       # Per-read bound for every session exchange

# =============================================================================
# Serial defaults
# =============================================================================
DEFAULT_PORT = "/dev/ttyUSB0"
DEFAULT_BAUD = 115200       # iROM start-up rate
DEFAULT_HIGHSPEED = 921600  # 8x start-up, max of the CP2101 bridge
DEFAULT_TERMBAUD = 230400   # Typical console rate of a booted kernel

# =============================================================================
# UART1 registers (baud renegotiation)
# =============================================================================
REG_UART1_UBIR = 0x1000A0A4     # BRM incremental register
REG_UART1_UBMR = 0x1000A0A8     # BRM modulator register
UBMR_VALUE = 10000 - 1          # Paired with UBIR = baud/100 - 1

# =============================================================================
# SDRAM controller init (from imx21_meminit.txt)
# (address, width, value), order matters
# =============================================================================
SDRAM_KICK_ADDRESS = 0xC0000000
SDRAM_KICK_COUNT = 8

SDRAM_PRECHARGE: List[Tuple[int, int, int]] = [
    (0x10000000, 32, 0x00040304),   # AIPI1 PSR0
    (0x10020000, 32, 0x00000000),   # AIPI2 PSR0
    (0x10000004, 32, 0xFFFBFCFB),   # AIPI1 PSR1
    (0x10020004, 32, 0xFFFFFFFF),   # AIPI2 PSR1
    (0xDF001008, 32, 0x00002000),   # EIM CS2
    (0xDF00100C, 32, 0x11118501),
    (0x10015520, 32, 0x00000000),   # GPIO pins to SDRAM function
    (0x10015538, 32, 0x00000000),
    (0x1003F300, 32, 0x00123456),
    (0xDF000000, 32, 0x92129399),   # SDCTL0: precharge command
    (0xC0200000, 32, 0x00000000),   # precharge all
    (0xDF000000, 32, 0xA2120300),   # SDCTL0: auto-refresh command
]

SDRAM_FINISH: List[Tuple[int, int, int]] = [
    (0xDF000000, 32, 0xB2120300),   # SDCTL0: set mode register
    (0xC0119800, 32, 0x00000000),   # load mode register
    (0xDF000000, 32, 0x8212F339),   # SDCTL0: normal operation
]

SDRAM_INIT_SEQUENCE: List[Tuple[int, int, int]] = (
    SDRAM_PRECHARGE
    + [(SDRAM_KICK_ADDRESS, 32, 0x00000000)] * SDRAM_KICK_COUNT
    + SDRAM_FINISH
)
