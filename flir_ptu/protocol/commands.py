"""
Command values and the PTU command catalogue.

Every exchange is described by an immutable Command built at the call site.
The reply shape decides which parser handles the result, not the command name.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

from flir_ptu.protocol.framing import FIELD_SENTINEL, LINE_END
from flir_ptu.protocol.transport import check_timeout


DEFAULT_TIMEOUT = 3.0
RESET_TIMEOUT = 60.0

# Arity of the "O" reply: voltage, body temp, pan motor temp, tilt motor temp
TELEMETRY_ARITY = 4


class ReplyShape(Enum):
    """Shape of the reply the device sends for a command."""
    ACK = "ack"              # "<echo> *" then CRLF, result inline with the echo
    TOKEN = "token"          # echo line, then "* <value>" line
    NUMERIC = "numeric"      # echo line, then "* a,b,c" line
    TELEMETRY = "telemetry"  # NUMERIC with arity 4
    POSITION = "position"    # "PP * <p>" / "TP" / "* <t>"
    FIELDS = "fields"        # multi-field reply, echo inline with the first field
    LITERAL = "literal"      # echo line, then a fixed acknowledgement literal


class Axis(Enum):
    """PTU axis selector with its reset command and reset acknowledgement."""
    PAN = ("P", "RP", "!P!P*")
    TILT = ("T", "RT", "!T!T*")
    BOTH = ("", "RE", "!T!T!P!P*")

    def __init__(self, prefix: str, reset_command: str, reset_ack: str):
        self.prefix = prefix
        self.reset_command = reset_command
        self.reset_ack = reset_ack

    @classmethod
    def parse(cls, value: str) -> "Axis":
        """Parse 'pan', 'tilt' or 'both' (case-insensitive)."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown axis: {value!r}. Must be pan, tilt or both")


class PowerMode(Enum):
    """Hold/move power level; value is the device's reply token."""
    OFF = "OFF"
    LOW = "LOW"
    REGULAR = "REG"
    HIGH = "HIGH"

    @property
    def code(self) -> str:
        """Single-letter suffix used by the set commands (PHL, PMH, ...)."""
        return {"OFF": "O", "LOW": "L", "REG": "R", "HIGH": "H"}[self.value]

    @classmethod
    def from_token(cls, token: str) -> "PowerMode":
        for mode in cls:
            if mode.value == token:
                return mode
        raise ValueError(f"Unknown power mode token: {token!r}")


class ControlMode(Enum):
    """Position control mode; value is both the set command and the query reply."""
    OPEN_LOOP = "COL"
    ENCODER = "CEC"

    @classmethod
    def from_token(cls, token: str) -> "ControlMode":
        for mode in cls:
            if mode.value == token:
                return mode
        raise ValueError(f"Unknown control mode token: {token!r}")


HOLD_POWER_MODES = (PowerMode.OFF, PowerMode.LOW, PowerMode.REGULAR)
MOVE_POWER_MODES = (PowerMode.OFF, PowerMode.LOW, PowerMode.REGULAR, PowerMode.HIGH)


@dataclass(frozen=True)
class Command:
    """
    One command exchange.

    Attributes:
        text: ASCII command body without the CR LF terminator.
        expected_echo: What the device must echo back first.
        timeout: Per-frame read timeout in seconds (finite).
        terminator: Byte ending the echo frame (``*`` or ``\\n``).
        shape: Reply shape, selects the parser.
        result_terminator: Byte ending the result frame(s).
        expected_result: Literal for LITERAL replies.
        arity: Expected field count for NUMERIC replies.
        field_names: Field names for FIELDS/POSITION replies.
    """

    text: str
    expected_echo: str
    timeout: float = DEFAULT_TIMEOUT
    terminator: bytes = LINE_END
    shape: ReplyShape = ReplyShape.TOKEN
    result_terminator: bytes = LINE_END
    expected_result: Optional[str] = None
    arity: Optional[int] = None
    field_names: Tuple[str, ...] = ()

    def __post_init__(self):
        check_timeout(self.timeout)
        if self.terminator not in (FIELD_SENTINEL, LINE_END):
            raise ValueError(f"Unsupported terminator {self.terminator!r}")
        if self.shape is ReplyShape.LITERAL and not self.expected_result:
            raise ValueError("LITERAL commands need an expected_result")
        if self.shape in (ReplyShape.FIELDS, ReplyShape.POSITION) and not self.field_names:
            raise ValueError(f"{self.shape.value} commands need field_names")

    @property
    def wire(self) -> bytes:
        """Bytes written to the channel."""
        return self.text.encode("ascii") + b"\r\n"

    @property
    def echo_inline(self) -> bool:
        """True when the first result field shares the echo line."""
        return self.shape in (ReplyShape.FIELDS, ReplyShape.POSITION)

    @property
    def extra_lines(self) -> int:
        """Lines to read after the echo line for multi-field replies."""
        return len(self.field_names) if self.echo_inline else 0


def ack(text: str, expected: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT) -> Command:
    """Set-style command acknowledged by ``<echo> *`` and the CR LF marker."""
    return Command(
        text=text,
        expected_echo=expected if expected is not None else text,
        timeout=timeout,
        terminator=FIELD_SENTINEL,
        shape=ReplyShape.ACK,
    )


def query(text: str, shape: ReplyShape = ReplyShape.TOKEN, timeout: float = DEFAULT_TIMEOUT,
          arity: Optional[int] = None) -> Command:
    """Single-value query answered by an echo line and a ``* <value>`` line."""
    return Command(text=text, expected_echo=text, timeout=timeout, shape=shape, arity=arity)


def telemetry(timeout: float = DEFAULT_TIMEOUT) -> Command:
    """Voltage and temperature query."""
    return query("O", ReplyShape.TELEMETRY, timeout, arity=TELEMETRY_ARITY)


def fields(names: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> Command:
    """Multi-field query such as ``PP TP PH TH PM TM``."""
    names = tuple(n.strip().upper() for n in names if n.strip())
    if not names:
        raise ValueError("At least one field name is required")
    return Command(
        text=" ".join(names),
        expected_echo=names[0],
        timeout=timeout,
        shape=ReplyShape.FIELDS,
        field_names=names,
    )


def position(timeout: float = DEFAULT_TIMEOUT) -> Command:
    """Pan and tilt position query (``PP TP``)."""
    return Command(
        text="PP TP",
        expected_echo="PP",
        timeout=timeout,
        shape=ReplyShape.POSITION,
        field_names=("PP", "TP"),
    )


def reset_axis(axis: Axis, timeout: float = RESET_TIMEOUT) -> Command:
    """Axis reset; the device homes the axis before acknowledging."""
    return Command(
        text=axis.reset_command,
        expected_echo=axis.reset_command,
        timeout=timeout,
        shape=ReplyShape.LITERAL,
        expected_result=axis.reset_ack,
    )


def set_hold_power(axis: Axis, mode: PowerMode, timeout: float = DEFAULT_TIMEOUT) -> Command:
    if axis is Axis.BOTH:
        raise ValueError("Hold power is set per axis")
    if mode not in HOLD_POWER_MODES:
        raise ValueError(f"Hold power cannot be {mode.value}")
    return ack(f"{axis.prefix}H{mode.code}", timeout=timeout)


def set_move_power(axis: Axis, mode: PowerMode, timeout: float = DEFAULT_TIMEOUT) -> Command:
    if axis is Axis.BOTH:
        raise ValueError("Move power is set per axis")
    return ack(f"{axis.prefix}M{mode.code}", timeout=timeout)


def set_control_mode(mode: ControlMode, timeout: float = DEFAULT_TIMEOUT) -> Command:
    return ack(mode.value, timeout=timeout)


# Sent in order after the banner; any failure aborts the handshake.
HANDSHAKE_COMMANDS: Tuple[Tuple[str, str], ...] = (
    ("FT", "Enable terse feedback"),
    ("LU", "Enable user limits"),
    ("PCE", "Enable continuous pan rotation"),
    ("PP0", "Reset pan position"),
)

BANNER_MARKER = "Initializing...*"
SUCCESS_MARKER = b"\r\n"
