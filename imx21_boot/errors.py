"""
Error taxonomy for the iROM session.

All session/transport failures derive from BootError so the command
sequence can stop on the first one. Each error keeps the context needed to
diagnose a device/firmware mismatch (address, size, raw response word).
"""

from typing import Optional, Sequence

__all__ = ['BootError', 'ResponseTimeout', 'ProtocolMismatch',
           'ValidationError', 'TransportError']


class BootError(Exception):
    """Base class for iROM protocol errors."""

    def __init__(self, message: str, operation: str = "",
                 address: Optional[int] = None, offset: Optional[int] = None,
                 size: Optional[int] = None):
        self.message = message
        self.operation = operation
        self.address = address
        self.offset = offset
        self.size = size
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.offset is not None:
            parts.append(f"offset {self.offset}")
        if self.size is not None:
            parts.append(f"size {self.size}")
        if self.address is not None:
            parts.append(f"at 0x{self.address:08x}")
        where = f" ({' '.join(parts)})" if parts else ""
        prefix = f"{self.operation}: " if self.operation else ""
        return f"{prefix}{self.message}{where}"


class ResponseTimeout(BootError):
    """Fewer response bytes arrived than expected within the read timeout."""

    def __init__(self, operation: str, expected: int, received: int, **context):
        self.expected = expected
        self.received = received
        super().__init__(f"operation timed out ({received}/{expected} bytes)",
                         operation, **context)


class ProtocolMismatch(BootError):
    """A response arrived but does not match any accepted word."""

    def __init__(self, operation: str, response: Sequence[int], **context):
        self.response = tuple(response)
        raw = ":".join(f"0x{word:08x}" for word in self.response)
        super().__init__(f"illegal response {raw}", operation, **context)


class ValidationError(BootError):
    """Bad argument detected before any I/O (width, missing target, usage)."""


class TransportError(BootError):
    """Serial port or download source failure."""
