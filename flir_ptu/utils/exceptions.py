"""
Custom exception classes for the FLIR PTU driver.

The protocol engine itself never raises these across its boundary; they are
used by the transport, the controller and the HTTP layer.
"""


class PTUException(Exception):
    """Base exception for all PTU driver errors."""
    pass


class NotConnectedError(PTUException):
    """Raised when operation requires connection but the PTU is disconnected."""
    pass


class DriverError(PTUException):
    """General driver error (maps to Alpaca ErrorNumber 1280)."""
    pass


class InvalidValueError(PTUException):
    """Invalid parameter value (maps to Alpaca ErrorNumber 1026)."""
    pass


class ChannelIOError(PTUException):
    """Underlying transport failure. Fatal: the connection must be torn down."""
    pass


class PortNotFoundError(DriverError):
    """Serial port or TCP endpoint does not exist."""
    pass


class PortInUseError(DriverError):
    """Serial port is already open by another application."""
    pass


class HandshakeError(DriverError):
    """Startup banner or handshake command sequence failed."""
    pass


class CommandFailedError(DriverError):
    """A user-issued command did not complete successfully."""

    def __init__(self, message: str, outcome=None):
        super().__init__(message)
        self.outcome = outcome
