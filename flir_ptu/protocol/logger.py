"""
Protocol message logger for debugging serial communication.

Captures TX/RX/ERR records with timestamps for the HTTP protocol log.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from flir_ptu.protocol.framing import make_visible


@dataclass
class ProtocolMessage:
    """A single protocol record (TX, RX, DRAIN or ERR)."""
    timestamp: str
    direction: str
    visible: str
    raw_hex: str
    command: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class ProtocolLogger:
    """
    Thread-safe logger for protocol messages.

    Maintains a circular buffer of messages with configurable max size.
    """

    DEFAULT_MAX_MESSAGES = 500

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        self._messages: deque = deque(maxlen=max_messages)
        self._lock = threading.Lock()
        self._tx_count = 0
        self._rx_count = 0
        self._drain_count = 0
        self._error_count = 0

    def _append(self, direction: str, data: bytes, command: Optional[str] = None,
                error: Optional[str] = None) -> None:
        self._messages.append(ProtocolMessage(
            timestamp=datetime.now().isoformat(timespec="milliseconds"),
            direction=direction,
            visible=make_visible(data) if data else "",
            raw_hex=data.hex().upper() if data else "",
            command=command,
            error=error,
        ))

    def log_tx(self, data: bytes, command: Optional[str] = None) -> None:
        """Log bytes written to the device."""
        with self._lock:
            self._tx_count += 1
            self._append("TX", data, command)

    def log_rx(self, data: bytes, command: Optional[str] = None, timed_out: bool = False) -> None:
        """Log a frame read from the device."""
        with self._lock:
            self._rx_count += 1
            error = None
            if timed_out:
                self._error_count += 1
                error = "Timed out before terminator" if data else "Empty response (timeout)"
            self._append("RX", data, command, error)

    def log_drain(self, data: bytes, command: Optional[str] = None) -> None:
        """Log residual bytes discarded by a drain."""
        if not data:
            return
        with self._lock:
            self._drain_count += 1
            self._append("DRAIN", data, command)

    def log_error(self, error_msg: str, data: bytes = b"", command: Optional[str] = None) -> None:
        """Log a failed exchange."""
        with self._lock:
            self._error_count += 1
            self._append("ERR", data, command, error_msg)

    def get_messages(self, limit: int = 100) -> List[dict]:
        """
        Get recent messages, oldest first.

        Args:
            limit: Maximum number of messages to return.
        """
        with self._lock:
            messages = list(self._messages)
            if len(messages) > limit:
                messages = messages[-limit:]
            return [m.to_dict() for m in messages]

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "total_messages": len(self._messages),
                "tx_count": self._tx_count,
                "rx_count": self._rx_count,
                "drain_count": self._drain_count,
                "error_count": self._error_count,
                "max_messages": self._messages.maxlen,
            }

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._tx_count = 0
            self._rx_count = 0
            self._drain_count = 0
            self._error_count = 0


# Global instance
_logger: Optional[ProtocolLogger] = None


def get_protocol_logger() -> ProtocolLogger:
    """Get or create the global protocol logger."""
    global _logger
    if _logger is None:
        _logger = ProtocolLogger()
    return _logger
