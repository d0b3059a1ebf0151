"""
Byte transport for the PTU protocol engine.

The engine depends only on the TransportChannel contract: blocking reads and
writes bounded by an explicit timeout, where a timeout is an ordinary return
value and a transport failure raises ChannelIOError.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import serial
from serial import SerialException

from flir_ptu.config.models import TransportConfig
from flir_ptu.utils.exceptions import (
    ChannelIOError,
    PortInUseError,
    PortNotFoundError,
)


logger = logging.getLogger(__name__)


def check_timeout(timeout: float) -> float:
    """
    Validate a read timeout.

    Raises:
        ValueError: If timeout is None, not positive, or infinite.
    """
    if timeout is None or timeout <= 0 or math.isinf(timeout) or math.isnan(timeout):
        raise ValueError(f"A finite positive timeout is required, got {timeout!r}")
    return timeout


class TransportChannel(ABC):
    """Abstract byte channel to the pan-tilt unit."""

    @abstractmethod
    def open(self) -> None:
        """
        Open the channel.

        Raises:
            PortNotFoundError: If the port or endpoint does not exist.
            PortInUseError: If the port is already open elsewhere.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Safe to call when already closed."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the channel is usable."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """
        Write bytes to the channel.

        Returns:
            Number of bytes written.

        Raises:
            ChannelIOError: On transport failure.
        """
        pass

    @abstractmethod
    def read_until(self, terminator: bytes, timeout: float) -> Tuple[bytes, bool]:
        """
        Read until terminator is seen or timeout elapses.

        Returns:
            (data, timed_out). data includes the terminator when not timed out.

        Raises:
            ChannelIOError: On transport failure.
        """
        pass

    @abstractmethod
    def read_exactly(self, n: int, timeout: float) -> Tuple[bytes, bool]:
        """
        Read exactly n bytes.

        Returns:
            (data, timed_out). On timeout data holds whatever arrived.

        Raises:
            ChannelIOError: On transport failure.
        """
        pass

    @abstractmethod
    def read_one(self, timeout: float) -> Tuple[Optional[bytes], bool]:
        """
        Read a single byte.

        Returns:
            (byte, timed_out). byte is None when timed out.

        Raises:
            ChannelIOError: On transport failure.
        """
        pass

    @property
    def description(self) -> str:
        """Human-readable channel name for logs."""
        return type(self).__name__


class SerialTransport(TransportChannel):
    """
    pyserial-backed transport.

    A device path opens a local serial port; a URL such as
    ``socket://host:port`` opens a network connection through
    ``serial.serial_for_url``, which is how TCP-attached units are reached.
    """

    DATA_BITS = serial.EIGHTBITS
    PARITY = serial.PARITY_NONE
    STOP_BITS = serial.STOPBITS_ONE

    def __init__(self, config: TransportConfig):
        """
        Initialize transport.

        Args:
            config: Transport configuration.
        """
        self._config = config
        self._port: Optional[serial.SerialBase] = None

    @property
    def description(self) -> str:
        return self._config.port

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        """Open the serial port or network endpoint."""
        if self.is_open:
            logger.warning("Transport already open")
            return

        port_name = self._config.port
        if not port_name:
            raise PortNotFoundError("No serial port or URL configured")

        timeout = self._config.timeout_seconds
        logger.info(f"Opening transport {port_name}")

        try:
            if self._config.is_url:
                self._port = serial.serial_for_url(
                    port_name,
                    baudrate=self._config.baud,
                    timeout=timeout,
                    write_timeout=timeout,
                )
            else:
                self._port = serial.Serial(
                    port=port_name,
                    baudrate=self._config.baud,
                    bytesize=self.DATA_BITS,
                    parity=self.PARITY,
                    stopbits=self.STOP_BITS,
                    timeout=timeout,
                    write_timeout=timeout,
                )
        except (SerialException, OSError) as e:
            self._port = None
            error_msg = str(e).lower()
            if "access" in error_msg or "permission" in error_msg or "in use" in error_msg or "busy" in error_msg:
                raise PortInUseError(f"{port_name} is already in use by another application")
            raise PortNotFoundError(f"Failed to open {port_name}: {e}")

        # Output only: the startup banner is waiting in the input buffer
        self._port.reset_output_buffer()

    def close(self) -> None:
        if self._port is not None:
            try:
                if self._port.is_open:
                    self._port.close()
                    logger.info("Transport closed")
            except (SerialException, OSError) as e:
                logger.warning(f"Error closing transport: {e}")
        self._port = None

    def _require_port(self) -> serial.SerialBase:
        if not self.is_open:
            raise ChannelIOError(f"{self.description} is not open")
        return self._port

    def write(self, data: bytes) -> int:
        port = self._require_port()
        try:
            written = port.write(data)
            port.flush()
        except (SerialException, OSError) as e:
            raise ChannelIOError(f"Write failed on {self.description}: {e}") from e
        return written if written is not None else len(data)

    def read_until(self, terminator: bytes, timeout: float) -> Tuple[bytes, bool]:
        port = self._require_port()
        port.timeout = check_timeout(timeout)
        try:
            data = port.read_until(terminator)
        except (SerialException, OSError) as e:
            raise ChannelIOError(f"Read failed on {self.description}: {e}") from e
        return bytes(data), not data.endswith(terminator)

    def read_exactly(self, n: int, timeout: float) -> Tuple[bytes, bool]:
        port = self._require_port()
        port.timeout = check_timeout(timeout)
        try:
            data = port.read(n)
        except (SerialException, OSError) as e:
            raise ChannelIOError(f"Read failed on {self.description}: {e}") from e
        return bytes(data), len(data) < n

    def read_one(self, timeout: float) -> Tuple[Optional[bytes], bool]:
        data, timed_out = self.read_exactly(1, timeout)
        if timed_out:
            return None, True
        return data, False
