"""
PTU controller (device-control layer).

Holds every piece of observable state and drives the protocol engine: the
engine returns values, the controller decides what to display. Recovery
follows the policy table: failed polls keep the previous value, failed user
commands raise after setting the alert indicator, and a channel failure
tears the connection down.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from flir_ptu.config.models import PTUConfig, TransportConfig
from flir_ptu.protocol import commands
from flir_ptu.protocol.commands import Axis, Command, ControlMode, PowerMode
from flir_ptu.protocol.facade import PollResult, PTUProtocol
from flir_ptu.protocol.logger import ProtocolLogger
from flir_ptu.protocol.outcomes import SessionOutcome
from flir_ptu.protocol.policy import OperationClass, RecoveryAction, resolve
from flir_ptu.protocol.responses import PositionSample, TelemetrySample
from flir_ptu.protocol.transport import TransportChannel
from flir_ptu.ptu import state
from flir_ptu.ptu.state import (
    AxisStatus,
    PropertyState,
    PTUStatus,
    TelemetryStatus,
    steps_to_degrees,
)
from flir_ptu.utils.exceptions import (
    ChannelIOError,
    CommandFailedError,
    HandshakeError,
    InvalidValueError,
    NotConnectedError,
)


logger = logging.getLogger(__name__)

AXES = (Axis.PAN, Axis.TILT)


class PTUController:
    """
    Pan-tilt unit controller.

    One I/O lock serializes poll cycles with user commands, so a user command
    never lands in the middle of a status poll.
    """

    def __init__(
        self,
        transport: TransportChannel,
        transport_config: TransportConfig,
        ptu_config: PTUConfig,
        protocol_logger: Optional[ProtocolLogger] = None,
    ):
        """
        Initialize PTU controller.

        Args:
            transport: Byte channel (serial port, TCP URL or simulator).
            transport_config: Timeouts and line limits for the engine.
            ptu_config: Polling behaviour.
            protocol_logger: TX/RX trace buffer. Optional.
        """
        self.transport = transport
        self.transport_config = transport_config
        self.config = ptu_config
        self._protocol_logger = protocol_logger

        self._protocol: Optional[PTUProtocol] = None
        self._connected = False
        self._io_lock = threading.RLock()
        self._state_lock = threading.Lock()

        # Observable state
        self._position: Optional[PositionSample] = None
        self._telemetry: Optional[TelemetrySample] = None
        self._corrections: Dict[Axis, Optional[int]] = {axis: None for axis in AXES}
        self._hold_power: Dict[Axis, Optional[PowerMode]] = {axis: None for axis in AXES}
        self._move_power: Dict[Axis, Optional[PowerMode]] = {axis: None for axis in AXES}
        self._resolution: Dict[Axis, Optional[float]] = {axis: None for axis in AXES}
        self._limits: Dict[Axis, Tuple[Optional[float], Optional[float]]] = {axis: (None, None) for axis in AXES}
        self._control_mode: Optional[ControlMode] = None
        self._indicators: Dict[str, PropertyState] = {name: PropertyState.IDLE for name in state.INDICATORS}
        self._last_poll: Optional[datetime] = None
        self._last_error: Optional[str] = None

        self._polling_thread: Optional[threading.Thread] = None
        self._stop_polling = threading.Event()

        logger.info("PTUController initialized")

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected and self.transport.is_open

    def connect(self) -> None:
        """
        Open the transport and run the handshake.

        Raises:
            PortNotFoundError / PortInUseError: If the transport cannot open.
            HandshakeError: If the banner or a handshake command fails.
            ChannelIOError: If the channel fails during the handshake.
        """
        if self._connected:
            logger.warning("Already connected")
            return

        self._set_indicator(state.CONNECTION, PropertyState.BUSY)
        try:
            self.transport.open()
        except Exception:
            self._set_indicator(state.CONNECTION, PropertyState.ALERT)
            raise

        protocol = PTUProtocol(
            self.transport,
            self.transport_config,
            protocol_logger=self._protocol_logger,
            on_outcome=self._record_outcome,
        )
        outcome = protocol.handshake()
        action = resolve(OperationClass.HANDSHAKE, outcome)
        if action is not RecoveryAction.ACCEPT:
            self.transport.close()
            self._set_indicator(state.CONNECTION, PropertyState.ALERT)
            if action is RecoveryAction.RECONNECT:
                raise ChannelIOError(f"Channel failed during handshake: {outcome.describe()}")
            raise HandshakeError(f"Handshake with {self.transport.description} failed: {outcome.describe()}")

        self._protocol = protocol
        self._connected = True
        self._set_indicator(state.CONNECTION, PropertyState.OK)
        logger.info(f"PTU connected on {self.transport.description}")

        if self.config.read_settings_on_connect:
            self.read_settings()
        self.refresh()

        if self.config.poll_on_connect:
            self._start_polling()

    def disconnect(self) -> None:
        """Stop polling and close the transport."""
        if not self._connected:
            return
        self._stop_polling_thread()
        with self._io_lock:
            self.transport.close()
        self._protocol = None
        self._connected = False
        self._set_indicator(state.CONNECTION, PropertyState.IDLE)
        logger.info("PTU disconnected")

    def _teardown(self, reason: str) -> None:
        """Drop the connection after a channel failure."""
        logger.error(f"Tearing down connection: {reason}")
        self._stop_polling_thread()
        self.transport.close()
        self._protocol = None
        self._connected = False
        self._last_error = reason
        self._set_indicator(state.CONNECTION, PropertyState.ALERT)

    def _require_protocol(self) -> PTUProtocol:
        protocol = self._protocol
        if not self._connected or protocol is None:
            raise NotConnectedError("PTU not connected")
        return protocol

    def _record_outcome(self, text: str, outcome: SessionOutcome) -> None:
        if not outcome.ok:
            self._last_error = f"{text}: {outcome.describe()}"

    def _set_indicator(self, name: str, value: PropertyState) -> None:
        with self._state_lock:
            self._indicators[name] = value

    def indicator(self, name: str) -> PropertyState:
        with self._state_lock:
            return self._indicators[name]

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def _start_polling(self) -> None:
        if self._polling_thread and self._polling_thread.is_alive():
            return
        self._stop_polling.clear()
        self._polling_thread = threading.Thread(target=self._poll_loop, name="ptu-poll", daemon=True)
        self._polling_thread.start()

    def _stop_polling_thread(self) -> None:
        self._stop_polling.set()
        thread = self._polling_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._polling_thread = None

    def _poll_loop(self) -> None:
        logger.debug("Polling thread started")
        while not self._stop_polling.wait(self.config.polling_interval_seconds):
            try:
                self.refresh()
            except (NotConnectedError, ChannelIOError) as e:
                logger.error(f"Polling stopped: {e}")
                break
        logger.debug("Polling thread stopped")

    def refresh(self) -> PollResult:
        """
        Run one status poll and update the observable state.

        A failed exchange keeps the previous value and sets its indicator to
        ALERT; the next cycle tries again.

        Raises:
            NotConnectedError: If not connected.
            ChannelIOError: If the channel failed (connection is torn down).
        """
        protocol = self._require_protocol()
        with self._io_lock:
            result = protocol.refresh_telemetry_and_position()

        if result.fatal:
            reason = "; ".join(o.describe() for _, o in result.failures())
            self._teardown(reason)
            raise ChannelIOError(reason)

        with self._state_lock:
            self._last_poll = datetime.now()

        for text, outcome in result.failures():
            logger.warning(f"Poll {text} failed, keeping previous value: {outcome.describe()}")

        if result.telemetry is not None:
            with self._state_lock:
                self._telemetry = result.telemetry
            self._set_indicator(state.TELEMETRY, PropertyState.OK)
        else:
            self._set_indicator(state.TELEMETRY, PropertyState.ALERT)

        if result.position is not None:
            with self._state_lock:
                self._position = result.position
            self._set_indicator(state.POSITION, PropertyState.OK)
        else:
            self._set_indicator(state.POSITION, PropertyState.ALERT)

        self._apply_corrections(result.pan_corrections, result.tilt_corrections)
        return result

    def _apply_corrections(self, pan: Optional[int], tilt: Optional[int]) -> None:
        if pan is None or tilt is None:
            self._set_indicator(state.CORRECTIONS, PropertyState.ALERT)
            return

        with self._state_lock:
            previous = dict(self._corrections)
            self._corrections[Axis.PAN] = pan
            self._corrections[Axis.TILT] = tilt

        for axis, count in ((Axis.PAN, pan), (Axis.TILT, tilt)):
            if count != previous[axis] and count > 0:
                logger.warning(f"{axis.name.capitalize()} encoder corrections changed: {previous[axis]} -> {count}")

        if pan > 0 or tilt > 0:
            self._set_indicator(state.CORRECTIONS, PropertyState.ALERT)
        else:
            self._set_indicator(state.CORRECTIONS, PropertyState.OK)

    def read_settings(self) -> None:
        """
        Query power modes, control mode, resolution and limits.

        Uses the POLL policy: a failed query leaves the value unknown.

        Raises:
            NotConnectedError: If not connected.
            ChannelIOError: If the channel failed (connection is torn down).
        """
        for name in (state.HOLD_POWER, state.MOVE_POWER, state.RESOLUTION, state.LIMITS, state.CONTROL_MODE):
            self._set_indicator(name, PropertyState.IDLE)

        for axis in AXES:
            self._read_setting(state.HOLD_POWER, f"{axis.prefix}H", PowerMode.from_token,
                               lambda v, a=axis: self._hold_power.__setitem__(a, v))
            self._read_setting(state.MOVE_POWER, f"{axis.prefix}M", PowerMode.from_token,
                               lambda v, a=axis: self._move_power.__setitem__(a, v))
            self._read_setting(state.RESOLUTION, f"{axis.prefix}R", float,
                               lambda v, a=axis: self._resolution.__setitem__(a, v))
            low = self._read_setting(state.LIMITS, f"{axis.prefix}N", float)
            high = self._read_setting(state.LIMITS, f"{axis.prefix}X", float)
            with self._state_lock:
                self._limits[axis] = (low, high)

        self._read_setting(state.CONTROL_MODE, "CT", ControlMode.from_token,
                           lambda v: setattr(self, "_control_mode", v))

    def _read_setting(self, indicator: str, text: str, convert: Callable, store: Optional[Callable] = None):
        protocol = self._require_protocol()
        with self._io_lock:
            outcome = protocol.query_token(text)

        action = resolve(OperationClass.POLL, outcome)
        if action is RecoveryAction.RECONNECT:
            self._teardown(outcome.describe())
            raise ChannelIOError(outcome.describe())
        if action is not RecoveryAction.ACCEPT:
            logger.warning(f"Could not read {text}: {outcome.describe()}")
            self._set_indicator(indicator, PropertyState.ALERT)
            return None

        try:
            value = convert(outcome.response.value)
        except ValueError as e:
            logger.warning(f"Unexpected {text} reply: {e}")
            self._set_indicator(indicator, PropertyState.ALERT)
            return None

        if store is not None:
            with self._state_lock:
                store(value)
        if self.indicator(indicator) is not PropertyState.ALERT:
            self._set_indicator(indicator, PropertyState.OK)
        return value

    # -------------------------------------------------------------------------
    # User commands
    # -------------------------------------------------------------------------

    def _user_command(self, indicator: str, label: str,
                      run: Callable[[PTUProtocol], SessionOutcome]) -> SessionOutcome:
        protocol = self._require_protocol()
        self._set_indicator(indicator, PropertyState.BUSY)
        with self._io_lock:
            outcome = run(protocol)

        action = resolve(OperationClass.USER_COMMAND, outcome)
        if action is RecoveryAction.ACCEPT:
            self._set_indicator(indicator, PropertyState.OK)
            return outcome

        self._set_indicator(indicator, PropertyState.ALERT)
        if action is RecoveryAction.RECONNECT:
            self._teardown(outcome.describe())
            raise ChannelIOError(f"{label}: {outcome.describe()}")
        logger.error(f"{label} failed: {outcome.describe()}")
        raise CommandFailedError(f"{label} failed: {outcome.describe()}", outcome)

    def _build(self, factory: Callable[..., Command], *args) -> Command:
        try:
            return factory(*args, timeout=self.transport_config.timeout_seconds)
        except ValueError as e:
            raise InvalidValueError(str(e))

    def set_hold_power(self, axis: Axis, mode: PowerMode) -> None:
        """
        Set hold power for one axis (OFF, LOW or REG).

        Raises:
            NotConnectedError: If not connected.
            InvalidValueError: If the axis/mode combination is not allowed.
            CommandFailedError: If the unit did not acknowledge.
        """
        command = self._build(commands.set_hold_power, axis, mode)
        self._user_command(state.HOLD_POWER, f"Set {axis.name.lower()} hold power {mode.value}",
                           lambda p: p.execute(command))
        with self._state_lock:
            self._hold_power[axis] = mode
        logger.info(f"{axis.name.capitalize()} hold power set to {mode.value}")

    def set_move_power(self, axis: Axis, mode: PowerMode) -> None:
        """Set move power for one axis (OFF, LOW, REG or HIGH)."""
        command = self._build(commands.set_move_power, axis, mode)
        self._user_command(state.MOVE_POWER, f"Set {axis.name.lower()} move power {mode.value}",
                           lambda p: p.execute(command))
        with self._state_lock:
            self._move_power[axis] = mode
        logger.info(f"{axis.name.capitalize()} move power set to {mode.value}")

    def set_control_mode(self, mode: ControlMode) -> None:
        """Switch between open-loop and encoder-corrected control."""
        command = self._build(commands.set_control_mode, mode)
        self._user_command(state.CONTROL_MODE, f"Set control mode {mode.value}",
                           lambda p: p.execute(command))
        with self._state_lock:
            self._control_mode = mode
        logger.info(f"Control mode set to {mode.value}")

    def reset_axis(self, axis: Axis) -> None:
        """
        Home one or both axes.

        Blocks for the whole homing cycle (up to the reset timeout). The
        reset indicator is BUSY meanwhile, OK on success, ALERT on failure.
        """
        self._user_command(state.RESET, f"Reset {axis.name.lower()} axis", lambda p: p.reset_axis(axis))
        logger.info(f"{axis.name.capitalize()} axis reset complete")

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def get_position(self) -> Optional[PositionSample]:
        if not self.connected:
            raise NotConnectedError("PTU not connected")
        with self._state_lock:
            return self._position

    def get_telemetry(self) -> Optional[TelemetrySample]:
        if not self.connected:
            raise NotConnectedError("PTU not connected")
        with self._state_lock:
            return self._telemetry

    def status(self) -> PTUStatus:
        """Snapshot of all observable state."""
        with self._state_lock:
            axes = {}
            for axis in AXES:
                steps = None
                if self._position is not None:
                    steps = self._position.pan if axis is Axis.PAN else self._position.tilt
                hold = self._hold_power[axis]
                move = self._move_power[axis]
                low, high = self._limits[axis]
                axes[axis] = AxisStatus(
                    position_steps=steps,
                    position_degrees=steps_to_degrees(steps, self._resolution[axis]),
                    hold_power=hold.value if hold else None,
                    move_power=move.value if move else None,
                    resolution_arcsec=self._resolution[axis],
                    min_limit=low,
                    max_limit=high,
                    corrections=self._corrections[axis],
                )

            telemetry = None
            if self._telemetry is not None:
                t = self._telemetry
                telemetry = TelemetryStatus(t.voltage, t.temp_body, t.temp_pan, t.temp_tilt)

            return PTUStatus(
                connected=self.connected,
                port=self.transport.description,
                pan=axes[Axis.PAN],
                tilt=axes[Axis.TILT],
                control_mode=self._control_mode.value if self._control_mode else None,
                telemetry=telemetry,
                indicators={name: value.value for name, value in self._indicators.items()},
                last_poll=self._last_poll.isoformat(timespec="seconds") if self._last_poll else None,
                last_error=self._last_error,
            )
