"""
Command sessions: one verified command exchange per session.

State machine::

    IDLE -> SENDING -> AWAITING_ECHO -> AWAITING_RESULT -> DONE
                  \\             \\                 \\
                   +-------------+-----------------+--> FAILED

The channel is drained before every write and again after any mismatch or
device error, so no exchange ever reads bytes left by a previous one.
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from flir_ptu.protocol.commands import SUCCESS_MARKER, Command, ReplyShape
from flir_ptu.protocol.framing import (
    LINE_END,
    BufferSanitizer,
    FrameReader,
    RawFrame,
    make_visible,
)
from flir_ptu.protocol.logger import ProtocolLogger, get_protocol_logger
from flir_ptu.protocol.outcomes import (
    EchoMismatch,
    MalformedFrame,
    ChannelFailure,
    Rejected,
    SessionOutcome,
    Success,
    Timeout,
    TimeoutStage,
    device_error,
)
from flir_ptu.protocol.responses import (
    MalformedReplyError,
    Token,
    matches_literal,
    parse_fields,
    parse_numeric_record,
    parse_position,
    parse_telemetry,
    parse_token,
)
from flir_ptu.protocol.transport import TransportChannel
from flir_ptu.utils.exceptions import ChannelIOError


logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_ECHO = "awaiting_echo"
    AWAITING_RESULT = "awaiting_result"
    DONE = "done"
    FAILED = "failed"


def parse_result(command: Command, data: bytes) -> SessionOutcome:
    """
    Run the parser for the command's reply shape over a complete frame.

    Returns:
        Success with the parsed response, or MalformedFrame.
    """
    try:
        if command.shape is ReplyShape.TOKEN:
            response = parse_token(data)
        elif command.shape is ReplyShape.NUMERIC:
            response = parse_numeric_record(data, command.arity)
        elif command.shape is ReplyShape.TELEMETRY:
            response = parse_telemetry(data)
        elif command.shape is ReplyShape.POSITION:
            response = parse_position(data)
        elif command.shape is ReplyShape.FIELDS:
            response = parse_fields(data, command.field_names)
        elif command.shape in (ReplyShape.ACK, ReplyShape.LITERAL):
            expected = command.expected_result or command.expected_echo
            if not matches_literal(data, expected):
                raise MalformedReplyError(f"Expected {expected!r}, got '{make_visible(data)}'")
            response = Token(expected)
        else:
            raise MalformedReplyError(f"No parser for {command.shape}")
    except MalformedReplyError as e:
        return MalformedFrame(str(e))
    return Success(response)


class ChannelState:
    """
    One open connection: the transport handle and the in-flight guard.

    At most one command is in flight at a time; sessions on the same channel
    are serialized by the channel lock.
    """

    def __init__(
        self,
        transport: TransportChannel,
        drain_byte_timeout: float = 0.1,
        max_command_length: int = 64,
        protocol_logger: Optional[ProtocolLogger] = None,
    ):
        self.transport = transport
        self.reader = FrameReader(transport)
        self.sanitizer = BufferSanitizer(transport, drain_byte_timeout)
        self.max_command_length = max_command_length
        self.protocol_logger = protocol_logger or get_protocol_logger()
        self._lock = threading.Lock()
        self._in_flight: Optional[str] = None

    @property
    def in_flight(self) -> Optional[str]:
        """Label of the exchange currently holding the channel."""
        return self._in_flight

    @contextmanager
    def exclusive(self, label: str) -> Iterator[None]:
        """Hold the channel for one exchange."""
        with self._lock:
            self._in_flight = label
            try:
                yield
            finally:
                self._in_flight = None

    def drain(self, initial_fragment: bytes = b"", context: str = "") -> bytes:
        """Drain residual bytes and report anything found at warning level."""
        drained = self.sanitizer.drain(initial_fragment)
        if drained:
            logger.warning(f"Residual bytes {context}: '{make_visible(drained)}'")
            self.protocol_logger.log_drain(drained, self._in_flight)
        return drained

    def write(self, data: bytes) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"TX: '{make_visible(data)}'")
        self.protocol_logger.log_tx(data, self._in_flight)
        self.transport.write(data)

    def read_frame(self, terminator: bytes, timeout: float) -> RawFrame:
        frame = self.reader.read_frame(terminator, timeout)
        self._log_rx(frame)
        return frame

    def read_exactly(self, n: int, timeout: float) -> RawFrame:
        frame = self.reader.read_exactly(n, timeout)
        self._log_rx(frame)
        return frame

    def _log_rx(self, frame: RawFrame) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"RX: {frame}")
        self.protocol_logger.log_rx(frame.data, self._in_flight, frame.timed_out)


class CommandSession:
    """
    Runs a single Command over a ChannelState.

    A session is used once. run() never raises for protocol or transport
    problems; every failure comes back as a SessionOutcome.
    """

    def __init__(self, channel: ChannelState, command: Command):
        self._channel = channel
        self._command = command
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def command(self) -> Command:
        return self._command

    def run(self) -> SessionOutcome:
        """Execute the exchange and classify the result."""
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Session for {self._command.text} already ran")

        with self._channel.exclusive(self._command.text):
            try:
                outcome = self._exchange()
            except ChannelIOError as e:
                logger.error(f"Channel failure during {self._command.text}: {e}")
                outcome = ChannelFailure(str(e))

            if outcome.ok:
                self._state = SessionState.DONE
            else:
                self._state = SessionState.FAILED
                self._channel.protocol_logger.log_error(outcome.describe(), command=self._command.text)
                logger.debug(f"{self._command.text} failed: {outcome.describe()}")

        return outcome

    def _exchange(self) -> SessionOutcome:
        cmd = self._command

        self._state = SessionState.SENDING
        residue = self._channel.drain(context=f"before {cmd.text}")
        if len(residue) >= self._channel.sanitizer.MAX_DRAIN_BYTES:
            return Rejected(f"Channel still busy after draining {len(residue)} bytes; {cmd.text} not sent")

        if len(cmd.text) > self._channel.max_command_length:
            return Rejected(
                f"{cmd.text[:16]}... exceeds maximum length of {self._channel.max_command_length} bytes"
            )
        try:
            wire = cmd.wire
        except UnicodeEncodeError:
            return Rejected(f"{cmd.text!r} is not ASCII")

        self._channel.write(wire)

        self._state = SessionState.AWAITING_ECHO
        echo = self._channel.read_frame(cmd.terminator, cmd.timeout)
        if echo.timed_out:
            return self._timed_out(TimeoutStage.ECHO, echo)
        if not self._echo_matches(echo):
            return self._unexpected(echo, cmd.expected_echo)

        self._state = SessionState.AWAITING_RESULT
        if cmd.shape is ReplyShape.ACK:
            return self._finish_ack()
        if cmd.echo_inline:
            return self._finish_fields(echo)
        return self._finish_result()

    def _echo_matches(self, echo: RawFrame) -> bool:
        cmd = self._command
        if cmd.shape is ReplyShape.ACK:
            return matches_literal(echo.data, cmd.expected_echo)
        line = echo.stripped
        if cmd.echo_inline:
            return line == cmd.expected_echo or line.startswith(cmd.expected_echo + " ")
        return line == cmd.expected_echo

    def _finish_ack(self) -> SessionOutcome:
        cmd = self._command
        marker = self._channel.read_exactly(len(SUCCESS_MARKER), cmd.timeout)
        if marker.timed_out:
            return self._timed_out(TimeoutStage.RESULT, marker)
        if marker.data != SUCCESS_MARKER:
            if marker.is_device_error:
                return self._unexpected(marker, "<CR><LF>")
            self._channel.drain(marker.data, context=f"after bad marker for {cmd.text}")
            return MalformedFrame(f"Expected <CR><LF> after {cmd.text} ack, got '{make_visible(marker.data)}'")
        return Success(Token(cmd.expected_echo))

    def _finish_result(self) -> SessionOutcome:
        cmd = self._command
        frame = self._channel.read_frame(cmd.result_terminator, cmd.timeout)
        if frame.timed_out:
            return self._timed_out(TimeoutStage.RESULT, frame)

        if cmd.shape is ReplyShape.LITERAL:
            if matches_literal(frame.data, cmd.expected_result):
                return Success(Token(cmd.expected_result))
            return self._unexpected(frame, cmd.expected_result)

        if frame.is_device_error:
            return self._unexpected(frame, "value")

        outcome = parse_result(cmd, frame.data)
        if not outcome.ok:
            self._channel.drain(context=f"after malformed {cmd.text} reply")
        return outcome

    def _finish_fields(self, echo: RawFrame) -> SessionOutcome:
        cmd = self._command
        frames = [echo]
        for _ in range(cmd.extra_lines):
            frame = self._channel.read_frame(LINE_END, cmd.timeout)
            if frame.timed_out:
                return self._timed_out(TimeoutStage.RESULT, frame)
            if frame.is_device_error:
                return self._unexpected(frame, "field")
            frames.append(frame)

        outcome = parse_result(cmd, b"".join(f.data for f in frames))
        if not outcome.ok:
            self._channel.drain(context=f"after malformed {cmd.text} reply")
        return outcome

    def _device_error_text(self, frame: RawFrame) -> Optional[str]:
        """Error text when the frame (past any echo of the command) starts with ``!``."""
        text = frame.stripped
        if text.startswith(self._command.text):
            text = text[len(self._command.text):].lstrip(" \r\n")
        if text.startswith("!"):
            return text
        return None

    def _is_partial_ack(self, text: str) -> bool:
        # Reset acks start with "!" and arrive one axis at a time
        cmd = self._command
        return cmd.shape is ReplyShape.LITERAL and cmd.expected_result.startswith(text)

    def _timed_out(self, stage: TimeoutStage, frame: RawFrame) -> SessionOutcome:
        # A "!" reply carries no "*" sentinel, so it surfaces as a timeout
        error_text = self._device_error_text(frame)
        self._channel.drain(frame.data, context=f"after {stage.value} timeout for {self._command.text}")
        if error_text and not self._is_partial_ack(error_text):
            return device_error(error_text)
        logger.warning(f"Timeout waiting for {stage.value} of {self._command.text}")
        return Timeout(stage, frame.data)

    def _unexpected(self, frame: RawFrame, expected: str) -> SessionOutcome:
        error_text = self._device_error_text(frame)
        self._channel.drain(frame.data, context=f"after unexpected reply to {self._command.text}")
        if error_text:
            logger.error(f"{self._command.text}: device reported '{error_text}'")
            return device_error(error_text)
        logger.error(f"{self._command.text}: expected {expected!r}, got {frame}")
        return EchoMismatch(expected, frame.stripped)
