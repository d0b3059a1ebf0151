"""
Frame reading and residual-byte draining.

A frame is everything up to and including a terminator byte: ``*`` for
single-shot acknowledgements, ``\\n`` for line-oriented replies.
"""

import logging
from dataclasses import dataclass

from flir_ptu.protocol.transport import TransportChannel, check_timeout


logger = logging.getLogger(__name__)

FIELD_SENTINEL = b"*"
LINE_END = b"\n"
CRLF = b"\r\n"
ERROR_SENTINEL = "!"


def make_visible(data: bytes) -> str:
    """
    Render bytes for logs with CR/LF and other control bytes made visible.

    Example:
        >>> make_visible(b"FT\\r\\n*")
        'FT<CR><LF>*'
    """
    out = []
    for b in data:
        if b == 0x0D:
            out.append("<CR>")
        elif b == 0x0A:
            out.append("<LF>")
        elif 32 <= b < 127:
            out.append(chr(b))
        else:
            out.append(f"[{b:02X}]")
    return "".join(out)


@dataclass(frozen=True)
class RawFrame:
    """Bytes read up to a terminator, or whatever arrived before a timeout."""

    data: bytes
    timed_out: bool

    @property
    def text(self) -> str:
        return self.data.decode("ascii", errors="replace")

    @property
    def stripped(self) -> str:
        """Text with surrounding spaces, CR and LF removed."""
        return self.text.strip(" \r\n")

    @property
    def is_device_error(self) -> bool:
        """True when the frame carries the device's ``!`` error sentinel."""
        return self.text.lstrip(" \r\n").startswith(ERROR_SENTINEL)

    def __str__(self) -> str:
        suffix = " (timed out)" if self.timed_out else ""
        return f"'{make_visible(self.data)}'{suffix}"


class FrameReader:
    """Reads terminator-delimited frames from a transport."""

    def __init__(self, transport: TransportChannel):
        self._transport = transport

    def read_frame(self, terminator: bytes, timeout: float) -> RawFrame:
        """
        Read until terminator or timeout.

        A timed out frame means "no complete frame", never "malformed frame";
        the partial bytes are kept for diagnostics.

        Args:
            terminator: Single terminator byte (``*`` or ``\\n``).
            timeout: Cumulative timeout in seconds (finite).

        Raises:
            ChannelIOError: On transport failure.
        """
        if len(terminator) != 1:
            raise ValueError(f"Terminator must be a single byte, got {terminator!r}")
        data, timed_out = self._transport.read_until(terminator, check_timeout(timeout))
        return RawFrame(data=data, timed_out=timed_out)

    def read_exactly(self, n: int, timeout: float) -> RawFrame:
        """Read a fixed-size frame, such as the two-byte success marker."""
        data, timed_out = self._transport.read_exactly(n, check_timeout(timeout))
        return RawFrame(data=data, timed_out=timed_out)


class BufferSanitizer:
    """
    Drains residual bytes from the channel.

    Reads one byte at a time with a short timeout until a read times out.
    Draining never fails; whatever was found is returned for the caller to
    report. A result of MAX_DRAIN_BYTES or more means the channel is still
    busy and nothing should be written.
    """

    # Guard against a device that never stops talking
    MAX_DRAIN_BYTES = 4096

    def __init__(self, transport: TransportChannel, byte_timeout: float = 0.1):
        self._transport = transport
        self._byte_timeout = check_timeout(byte_timeout)

    @property
    def byte_timeout(self) -> float:
        return self._byte_timeout

    def drain(self, initial_fragment: bytes = b"") -> bytes:
        """
        Discard everything currently readable.

        Args:
            initial_fragment: Bytes already consumed by the caller that
                belong in the diagnostic report.

        Returns:
            initial_fragment followed by every drained byte (possibly empty).

        Raises:
            ChannelIOError: On transport failure.
        """
        drained = bytearray(initial_fragment)
        count = 0
        while count < self.MAX_DRAIN_BYTES:
            byte, timed_out = self._transport.read_one(self._byte_timeout)
            if timed_out or not byte:
                break
            drained += byte
            count += 1
        else:
            logger.warning(f"Drain stopped after {self.MAX_DRAIN_BYTES} bytes; channel still busy")
        return bytes(drained)
