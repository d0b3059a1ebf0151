"""
Typed PTU operations over the command session engine.

Each operation is one CommandSession plus reply-shape dispatch. Results come
back as values: SessionOutcome for exchanges, NaN or None for numeric
conveniences. The facade holds no display state; callers keep whatever they
want to show.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from flir_ptu.config.models import TransportConfig
from flir_ptu.protocol import commands
from flir_ptu.protocol.commands import (
    BANNER_MARKER,
    HANDSHAKE_COMMANDS,
    SUCCESS_MARKER,
    Axis,
    Command,
)
from flir_ptu.protocol.framing import FIELD_SENTINEL
from flir_ptu.protocol.logger import ProtocolLogger
from flir_ptu.protocol.outcomes import (
    ChannelFailure,
    MalformedFrame,
    Rejected,
    SessionOutcome,
    Success,
    Timeout,
    TimeoutStage,
)
from flir_ptu.protocol.policy import OperationClass, RecoveryAction, resolve
from flir_ptu.protocol.responses import (
    MalformedReplyError,
    PositionSample,
    TelemetrySample,
    Token,
    parse_integer,
    parse_numeric_record,
)
from flir_ptu.protocol.session import ChannelState, CommandSession
from flir_ptu.protocol.transport import TransportChannel
from flir_ptu.utils.exceptions import ChannelIOError


logger = logging.getLogger(__name__)

OutcomeSink = Callable[[str, SessionOutcome], None]


@dataclass(frozen=True)
class PollResult:
    """
    One status poll: telemetry, encoder corrections and position.

    A field is None when its exchange failed; the caller keeps its previous
    value in that case.
    """

    position: Optional[PositionSample]
    telemetry: Optional[TelemetrySample]
    pan_corrections: Optional[int]
    tilt_corrections: Optional[int]
    outcomes: Tuple[Tuple[str, SessionOutcome], ...] = ()

    @property
    def ok(self) -> bool:
        return all(outcome.ok for _, outcome in self.outcomes)

    @property
    def fatal(self) -> bool:
        return any(outcome.fatal for _, outcome in self.outcomes)

    def failures(self) -> Tuple[Tuple[str, SessionOutcome], ...]:
        return tuple((text, outcome) for text, outcome in self.outcomes if not outcome.ok)


class PTUProtocol:
    """
    Public surface of the protocol engine.

    handshake() must succeed before any other operation is accepted;
    until then every operation returns Rejected without touching the wire.
    """

    def __init__(
        self,
        transport: TransportChannel,
        config: TransportConfig,
        protocol_logger: Optional[ProtocolLogger] = None,
        on_outcome: Optional[OutcomeSink] = None,
    ):
        """
        Initialize the facade for one open connection.

        Args:
            transport: Open byte channel to the unit.
            config: Timeouts and line length limits.
            protocol_logger: TX/RX trace buffer (global one by default).
            on_outcome: Sink called with (command text, outcome) after
                every exchange.
        """
        self._config = config
        self._channel = ChannelState(
            transport,
            drain_byte_timeout=config.drain_byte_timeout_seconds,
            max_command_length=config.max_command_length,
            protocol_logger=protocol_logger,
        )
        self._on_outcome = on_outcome
        self._handshake_complete = False

    @property
    def channel(self) -> ChannelState:
        return self._channel

    @property
    def handshake_complete(self) -> bool:
        return self._handshake_complete

    def _notify(self, text: str, outcome: SessionOutcome) -> SessionOutcome:
        if self._on_outcome is not None:
            self._on_outcome(text, outcome)
        return outcome

    def _run(self, command: Command) -> SessionOutcome:
        return self._notify(command.text, CommandSession(self._channel, command).run())

    # -------------------------------------------------------------------------
    # Handshake
    # -------------------------------------------------------------------------

    def handshake(self) -> SessionOutcome:
        """
        Verify the startup banner and put the unit in terse mode.

        Reads the banner up to its ``*``, checks for ``Initializing...*``
        and the CR LF marker, then sends FT, LU, PCE and PP0 in order. The
        first failure aborts; there is no partially established state.

        Returns:
            Success carrying the banner text, or the first failed outcome.
        """
        self._handshake_complete = False

        banner = self._notify("banner", self._read_banner())
        if not banner.ok:
            logger.error(f"Handshake failed: {banner.describe()}")
            return banner

        for text, description in HANDSHAKE_COMMANDS:
            outcome = self._run(commands.ack(text, timeout=self._config.timeout_seconds))
            if resolve(OperationClass.HANDSHAKE, outcome) is not RecoveryAction.ACCEPT:
                logger.error(f"Handshake failed at {text} ({description}): {outcome.describe()}")
                return outcome
            logger.debug(f"Handshake: {description} OK")

        self._handshake_complete = True
        logger.info("Handshake complete")
        return banner

    def _read_banner(self) -> SessionOutcome:
        timeout = self._config.handshake_timeout_seconds
        with self._channel.exclusive("banner"):
            try:
                frame = self._channel.read_frame(FIELD_SENTINEL, timeout)
                if frame.timed_out:
                    self._channel.drain(frame.data, context="after banner timeout")
                    return Timeout(TimeoutStage.BANNER, frame.data)
                if BANNER_MARKER not in frame.text:
                    self._channel.drain(frame.data, context="after unexpected banner")
                    return MalformedFrame(f"Banner does not contain {BANNER_MARKER!r}: {frame}")

                marker = self._channel.read_exactly(len(SUCCESS_MARKER), self._config.timeout_seconds)
                if marker.timed_out:
                    return Timeout(TimeoutStage.BANNER, frame.data + marker.data)
                if marker.data != SUCCESS_MARKER:
                    self._channel.drain(marker.data, context="after banner")
                    return MalformedFrame(f"Expected <CR><LF> after banner, got {marker}")
            except ChannelIOError as e:
                logger.error(f"Channel failure during handshake: {e}")
                return ChannelFailure(str(e))

        logger.info(f"Banner received: {frame.stripped.splitlines()[-1]}")
        return Success(Token(frame.stripped))

    # -------------------------------------------------------------------------
    # Generic exchanges
    # -------------------------------------------------------------------------

    def execute(self, command: Command) -> SessionOutcome:
        """Run one command exchange."""
        if not self._handshake_complete:
            return self._notify(command.text, Rejected("Handshake has not completed"))
        return self._run(command)

    def query_token(self, text: str) -> SessionOutcome:
        """Single-value query (``PH``, ``CT``, ...)."""
        return self.execute(commands.query(text, timeout=self._config.timeout_seconds))

    def query_float(self, text: str) -> float:
        """
        Single-value numeric query.

        Returns:
            The value, or NaN if the exchange failed or the value is not a number.
        """
        return _as_float(self.query_token(text), text)

    def query_int(self, text: str) -> Optional[int]:
        """Single-value integer query; None on failure."""
        return _as_int(self.query_token(text), text)

    def query_position(self) -> SessionOutcome:
        """Pan and tilt position (``PP TP``)."""
        return self.execute(commands.position(self._config.timeout_seconds))

    def query_telemetry(self) -> SessionOutcome:
        """Voltage and temperatures (``O``)."""
        return self.execute(commands.telemetry(self._config.timeout_seconds))

    def query_fields(self, names: Sequence[str]) -> SessionOutcome:
        """Multi-field query such as ``PP TP PH TH PM TM``."""
        return self.execute(commands.fields(names, self._config.timeout_seconds))

    def send_and_expect(self, text: str, expected: Optional[str] = None) -> SessionOutcome:
        """Send an ack-style command and verify its acknowledgement literal."""
        return self.execute(commands.ack(text, expected, self._config.timeout_seconds))

    def run_and_verify(self, text: str, expected: Optional[str] = None) -> bool:
        """Send a set command; True when the exact literal came back."""
        return self.send_and_expect(text, expected).ok

    def reset_axis(self, axis: Axis) -> SessionOutcome:
        """
        Reset (home) one or both axes.

        Uses the extended reset timeout; the device answers only after the
        homing cycle. The outcome is truthy on success.
        """
        logger.info(f"Resetting {axis.name.lower()} axis ({axis.reset_command})")
        return self.execute(commands.reset_axis(axis, self._config.reset_timeout_seconds))

    # -------------------------------------------------------------------------
    # Status poll
    # -------------------------------------------------------------------------

    def refresh_telemetry_and_position(self) -> PollResult:
        """
        Run one status poll: telemetry, encoder corrections, position.

        Failures are left to the caller per the POLL policy; a channel
        failure stops the poll early.
        """
        outcomes = []
        telemetry = pan_corrections = tilt_corrections = position = None

        plan = (
            ("O", lambda: self.query_telemetry()),
            ("CPEC", lambda: self.query_token("CPEC")),
            ("CTEC", lambda: self.query_token("CTEC")),
            ("PP TP", lambda: self.query_position()),
        )
        for text, run in plan:
            outcome = run()
            outcomes.append((text, outcome))
            if resolve(OperationClass.POLL, outcome) is RecoveryAction.RECONNECT:
                break
            if not outcome.ok:
                continue
            if text == "O":
                telemetry = outcome.response
            elif text == "CPEC":
                pan_corrections = _as_int(outcome, text)
            elif text == "CTEC":
                tilt_corrections = _as_int(outcome, text)
            else:
                position = outcome.response

        return PollResult(
            position=position,
            telemetry=telemetry,
            pan_corrections=pan_corrections,
            tilt_corrections=tilt_corrections,
            outcomes=tuple(outcomes),
        )


def _as_float(outcome: SessionOutcome, text: str) -> float:
    if not outcome.ok:
        return math.nan
    try:
        return parse_numeric_record(outcome.response.value, 1).values[0]
    except MalformedReplyError:
        logger.warning(f"{text}: {outcome.response.value!r} is not a number")
        return math.nan


def _as_int(outcome: SessionOutcome, text: str) -> Optional[int]:
    if not outcome.ok:
        return None
    try:
        return parse_integer(outcome.response.value, text)
    except MalformedReplyError as e:
        logger.warning(f"{text}: {e}")
        return None
