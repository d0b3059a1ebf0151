"""
Map driver exceptions to envelope error numbers.
"""

from typing import Tuple

from flir_ptu.utils.exceptions import (
    ChannelIOError,
    CommandFailedError,
    DriverError,
    InvalidValueError,
    NotConnectedError,
)


# Alpaca error codes; driver-specific codes live in 0x500-0xFFF
ERROR_NOT_IMPLEMENTED = 0x400  # 1024
ERROR_INVALID_VALUE = 0x402  # 1026
ERROR_NOT_CONNECTED = 0x407  # 1031
ERROR_DRIVER_ERROR = 0x500  # 1280
ERROR_CHANNEL_IO = 0x501  # 1281
ERROR_COMMAND_FAILED = 0x502  # 1282


def map_exception(exception: Exception) -> Tuple[int, str]:
    """
    Map exception to error number and message.

    Returns:
        Tuple of (ErrorNumber, ErrorMessage).
    """
    if isinstance(exception, NotConnectedError):
        return ERROR_NOT_CONNECTED, str(exception)

    if isinstance(exception, (InvalidValueError, ValueError)):
        return ERROR_INVALID_VALUE, str(exception)

    if isinstance(exception, ChannelIOError):
        return ERROR_CHANNEL_IO, str(exception)

    if isinstance(exception, CommandFailedError):
        return ERROR_COMMAND_FAILED, str(exception)

    if isinstance(exception, DriverError):
        return ERROR_DRIVER_ERROR, str(exception)

    if isinstance(exception, NotImplementedError):
        return ERROR_NOT_IMPLEMENTED, str(exception) or "Not implemented"

    return ERROR_DRIVER_ERROR, f"Internal error: {type(exception).__name__}: {exception}"
