"""
Session outcomes: the engine's error taxonomy as values.

Callers never see exceptions from a command exchange; they get one of these.
Outcomes are truthy only on success.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from flir_ptu.protocol.responses import ParsedResponse


class OutcomeKind(Enum):
    SUCCESS = "success"
    ECHO_MISMATCH = "echo_mismatch"
    TIMEOUT = "timeout"
    DEVICE_ERROR = "device_error"
    MALFORMED_FRAME = "malformed_frame"
    CHANNEL_IO_ERROR = "channel_io_error"
    REJECTED = "rejected"


class TimeoutStage(Enum):
    """Where in the exchange the terminator never arrived."""
    BANNER = "banner"
    ECHO = "echo"
    RESULT = "result"


@dataclass(frozen=True)
class SessionOutcome:
    """Base class for all outcomes."""

    kind: ClassVar[OutcomeKind]

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def fatal(self) -> bool:
        """True when the connection must be torn down."""
        return self.kind is OutcomeKind.CHANNEL_IO_ERROR

    def __bool__(self) -> bool:
        return self.ok

    def describe(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class Success(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.SUCCESS
    response: ParsedResponse

    def describe(self) -> str:
        return f"success: {self.response}"


@dataclass(frozen=True)
class EchoMismatch(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.ECHO_MISMATCH
    expected: str
    actual: str

    def describe(self) -> str:
        return f"echo mismatch: expected {self.expected!r}, got {self.actual!r}"


@dataclass(frozen=True)
class Timeout(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.TIMEOUT
    stage: TimeoutStage
    partial: bytes = b""

    def describe(self) -> str:
        return f"timeout waiting for {self.stage.value}"


@dataclass(frozen=True)
class DeviceError(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.DEVICE_ERROR
    text: str

    def describe(self) -> str:
        return f"device error: {self.text}"


@dataclass(frozen=True)
class AxisNotInitialized(DeviceError):
    """
    Device reported an axis error.

    Seen on a factory-reset unit whose axes were never reset; an axis reset
    (RP/RT/RE) is needed, but it is not issued automatically.
    """

    def describe(self) -> str:
        return f"axis not initialized: {self.text} (reset the axes)"


@dataclass(frozen=True)
class MalformedFrame(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.MALFORMED_FRAME
    reason: str

    def describe(self) -> str:
        return f"malformed frame: {self.reason}"


@dataclass(frozen=True)
class ChannelFailure(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.CHANNEL_IO_ERROR
    reason: str

    def describe(self) -> str:
        return f"channel I/O error: {self.reason}"


@dataclass(frozen=True)
class Rejected(SessionOutcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.REJECTED
    reason: str

    def describe(self) -> str:
        return f"rejected: {self.reason}"


def device_error(text: str) -> DeviceError:
    """Build the right DeviceError subtype for a ``!`` reply."""
    if "axis error" in text.lower():
        return AxisNotInitialized(text)
    return DeviceError(text)
