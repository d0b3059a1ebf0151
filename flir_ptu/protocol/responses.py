"""
Reply values and the response parser family.

Parsers are chosen by reply shape. Multi-field replies follow one rule:
every field is ``NAME * value CRLF`` except the last, which is
``NAME CRLF * value CRLF``. The device inserts CR LF before the ``*`` of the
final field only. ``_FieldScanner`` encodes that rule once; the position
parser is the same grammar with names ``PP`` and ``TP``.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

from flir_ptu.protocol.commands import TELEMETRY_ARITY


# Plain decimal with optional exponent
_DECIMAL = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")
_INTEGER = re.compile(r"-?[0-9]+")


class MalformedReplyError(ValueError):
    """A complete frame whose content does not match the expected grammar."""
    pass


@dataclass(frozen=True)
class Token:
    """Single literal value (power mode, control mode, raw number text)."""
    value: str


@dataclass(frozen=True)
class NumericFields:
    """Comma-delimited floating point record."""
    values: Tuple[float, ...]


@dataclass(frozen=True)
class PositionSample:
    """Pan and tilt position in motor steps."""
    pan: int
    tilt: int


@dataclass(frozen=True)
class TelemetrySample:
    """Input voltage and temperatures (degrees Fahrenheit)."""
    voltage: float
    temp_body: float
    temp_pan: float
    temp_tilt: float


@dataclass(frozen=True)
class FieldRecord:
    """Named values from a multi-field reply, in reply order."""
    fields: Tuple[Tuple[str, str], ...]

    def get(self, name: str) -> Optional[str]:
        for key, value in self.fields:
            if key == name:
                return value
        return None

    def as_dict(self) -> Dict[str, str]:
        return dict(self.fields)


ParsedResponse = Union[Token, NumericFields, PositionSample, TelemetrySample, FieldRecord]


def _decode(data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        return data.decode("ascii", errors="replace")
    return data


def parse_token(data: Union[bytes, str]) -> Token:
    """
    Strip the leading ``*``/space run and trailing CR LF.

    Raises:
        MalformedReplyError: If nothing is left.
    """
    value = _decode(data).lstrip("* ").rstrip("\r\n").strip()
    if not value:
        raise MalformedReplyError(f"Empty value in reply {_decode(data)!r}")
    return Token(value)


def parse_numeric_record(data: Union[bytes, str], arity: Optional[int] = None) -> NumericFields:
    """
    Split a comma-delimited line into floats.

    Raises:
        MalformedReplyError: On a non-numeric field or wrong field count.
    """
    text = parse_token(data).value
    parts = text.split(",")
    if arity is not None and len(parts) != arity:
        raise MalformedReplyError(f"Expected {arity} fields, got {len(parts)} in {text!r}")
    values = []
    for part in parts:
        if not _DECIMAL.fullmatch(part.strip()):
            raise MalformedReplyError(f"Non-numeric field {part!r} in {text!r}")
        values.append(float(part.strip()))
    return NumericFields(tuple(values))


def parse_telemetry(data: Union[bytes, str]) -> TelemetrySample:
    """
    Parse ``<voltage>,<tempBody>,<tempPan>,<tempTilt>``.

    Example:
        >>> parse_telemetry("12.1,75.0,80.0,78.5")
        TelemetrySample(voltage=12.1, temp_body=75.0, temp_pan=80.0, temp_tilt=78.5)
    """
    voltage, temp_body, temp_pan, temp_tilt = parse_numeric_record(data, TELEMETRY_ARITY).values
    return TelemetrySample(voltage, temp_body, temp_pan, temp_tilt)


class _FieldScanner:
    """Cursor over a reply string for the multi-field grammar."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def fail(self, what: str) -> None:
        shown = self.text[self.pos:self.pos + 12]
        raise MalformedReplyError(f"Expected {what} at offset {self.pos}, found {shown!r}")

    def literal(self, expected: str) -> None:
        if not self.text.startswith(expected, self.pos):
            self.fail(repr(expected))
        self.pos += len(expected)

    def spaces(self, required: bool = False) -> None:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] == " ":
            self.pos += 1
        if required and self.pos == start:
            self.fail("space")

    def crlf(self) -> None:
        self.literal("\r\n")

    def value(self) -> str:
        end = self.text.find("\r", self.pos)
        if end < 0:
            self.fail("CR LF after value")
        value = self.text[self.pos:end].strip()
        self.pos = end
        return value

    def end(self) -> None:
        if self.pos != len(self.text):
            self.fail("end of reply")

    def field(self, name: str, last: bool) -> Tuple[str, str]:
        self.literal(name)
        if last:
            # The final field breaks the line before its sentinel
            self.crlf()
        else:
            self.spaces(required=True)
        self.literal("*")
        self.spaces()
        value = self.value()
        self.crlf()
        return name, value


def parse_fields(data: Union[bytes, str], names: Sequence[str]) -> FieldRecord:
    """
    Parse a multi-field reply for the given field names.

    Raises:
        MalformedReplyError: If the reply does not follow the grammar exactly.
    """
    if not names:
        raise ValueError("At least one field name is required")
    scanner = _FieldScanner(_decode(data))
    parsed = [scanner.field(name, last=(i == len(names) - 1)) for i, name in enumerate(names)]
    scanner.end()
    return FieldRecord(tuple(parsed))


def parse_integer(value: str, name: str = "value") -> int:
    """Parse a plain decimal integer such as a step count."""
    if not _INTEGER.fullmatch(value):
        raise MalformedReplyError(f"{name} value {value!r} is not an integer")
    return int(value)


def parse_position(data: Union[bytes, str]) -> PositionSample:
    """
    Parse ``PP * <int> CRLF TP CRLF * <int> CRLF``.

    Example:
        >>> parse_position(b"PP * 100\\r\\nTP\\r\\n* -600\\r\\n")
        PositionSample(pan=100, tilt=-600)
    """
    record = parse_fields(data, ("PP", "TP"))
    return PositionSample(
        pan=parse_integer(record.get("PP"), "PP"),
        tilt=parse_integer(record.get("TP"), "TP"),
    )


def matches_literal(data: Union[bytes, str], expected: str) -> bool:
    """
    Compare a frame against a literal.

    Surrounding spaces and CR/LF are ignored, and a single trailing ``*``
    sentinel is optional. No other difference is tolerated, so ``FTX`` never
    matches ``FT``.
    """
    text = _decode(data).strip(" \r\n")
    if text == expected:
        return True
    if text.endswith("*") and not expected.endswith("*"):
        return text[:-1].rstrip(" \r\n") == expected
    return False
