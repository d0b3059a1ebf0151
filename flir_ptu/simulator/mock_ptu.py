"""
Simulated pan-tilt unit.

Implements TransportChannel at byte level so the whole protocol engine runs
unchanged against it: the banner on open, command echoes, the irregular
multi-field framing, reset acknowledgements and ``!`` errors.
"""

import logging
import random
import re
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from flir_ptu.config.models import SimulatorConfig
from flir_ptu.protocol.framing import make_visible
from flir_ptu.protocol.transport import TransportChannel, check_timeout
from flir_ptu.utils.exceptions import ChannelIOError


logger = logging.getLogger(__name__)

_POWER_CODES = {"O": "OFF", "L": "LOW", "R": "REG", "H": "HIGH"}
_HOLD_CODES = ("O", "L", "R")
_RESET_ACKS = {"RP": "!P!P*", "RT": "!T!T*", "RE": "!T!T!P!P*"}
_POSITION_SET = re.compile(r"^(PP|TP)(-?\d+)$")


class SimulatedPTUTransport(TransportChannel):
    """
    Mock PTU behind the TransportChannel contract.

    Replies are queued synchronously when a full command line is written;
    reads wait on a condition until their terminator arrives or the timeout
    elapses, like a real port.
    """

    def __init__(self, config: SimulatorConfig):
        """
        Initialize simulator.

        Args:
            config: Simulator configuration.
        """
        self.config = config
        self._cond = threading.Condition()
        self._open = False
        self._inbox = bytearray()
        self._line = bytearray()

        # Virtual hardware state
        self._pan = config.initial_pan
        self._tilt = config.initial_tilt
        self._hold = {"P": "REG", "T": "REG"}
        self._move = {"P": "REG", "T": "REG"}
        self._control_mode = "CEC"
        self._corrections = {"P": 0, "T": 0}
        self._initialized = {"P": config.axes_initialized, "T": config.axes_initialized}
        self._continuous_pan = False

        self._queries: Dict[str, Callable[[], str]] = {
            "PP": lambda: str(self._pan),
            "TP": lambda: str(self._tilt),
            "PH": lambda: self._hold["P"],
            "TH": lambda: self._hold["T"],
            "PM": lambda: self._move["P"],
            "TM": lambda: self._move["T"],
            "CT": lambda: self._control_mode,
            "PR": lambda: f"{config.pan_resolution_arcsec:.4f}",
            "TR": lambda: f"{config.tilt_resolution_arcsec:.4f}",
            "PN": lambda: str(config.pan_limits[0]),
            "PX": lambda: str(config.pan_limits[1]),
            "TN": lambda: str(config.tilt_limits[0]),
            "TX": lambda: str(config.tilt_limits[1]),
            "CPEC": lambda: str(self._corrections["P"]),
            "CTEC": lambda: str(self._corrections["T"]),
        }

        logger.info("SimulatedPTUTransport initialized")

    @property
    def description(self) -> str:
        return "simulator"

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        """Open the simulated channel and emit the startup banner."""
        with self._cond:
            if self._open:
                logger.warning("Simulator already open")
                return
            self._open = True
            self._inbox.clear()
            self._line.clear()
            self._inbox += self.config.banner.encode("ascii")
            self._cond.notify_all()
        logger.info("Simulator opened")

    def close(self) -> None:
        with self._cond:
            if self._open:
                logger.info("Simulator closed")
            self._open = False
            self._cond.notify_all()

    def inject(self, data: bytes) -> None:
        """Push raw bytes into the read side, e.g. stray bytes from a glitch."""
        with self._cond:
            self._inbox += data
            self._cond.notify_all()

    def set_corrections(self, pan: int, tilt: int) -> None:
        """Set the encoder correction counters reported by CPEC/CTEC."""
        self._corrections["P"] = pan
        self._corrections["T"] = tilt

    # -------------------------------------------------------------------------
    # TransportChannel
    # -------------------------------------------------------------------------

    def _require_open(self) -> None:
        if not self._open:
            raise ChannelIOError("Simulator is not open")

    def write(self, data: bytes) -> int:
        if self.config.response_latency_ms > 0:
            time.sleep(self.config.response_latency_ms / 1000.0)

        with self._cond:
            self._require_open()
            self._line += data
            while b"\r\n" in self._line:
                raw, _, rest = bytes(self._line).partition(b"\r\n")
                self._line = bytearray(rest)
                reply = self._reply_for(raw.decode("ascii", errors="replace"))
                if reply is None:
                    continue
                self._inbox += reply
                if self.config.residual_bytes:
                    self._inbox += self.config.residual_bytes.encode("ascii")
            self._cond.notify_all()
        return len(data)

    def _take(self, ready: Callable[[bytearray], int], timeout: float) -> Tuple[bytes, bool]:
        """Wait until ready() returns a byte count, or return everything on timeout."""
        deadline = time.monotonic() + check_timeout(timeout)
        with self._cond:
            while True:
                self._require_open()
                count = ready(self._inbox)
                if count > 0:
                    data = bytes(self._inbox[:count])
                    del self._inbox[:count]
                    return data, False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    data = bytes(self._inbox)
                    self._inbox.clear()
                    return data, True
                self._cond.wait(remaining)

    def read_until(self, terminator: bytes, timeout: float) -> Tuple[bytes, bool]:
        return self._take(lambda buf: buf.find(terminator) + len(terminator) if terminator in buf else 0,
                          timeout)

    def read_exactly(self, n: int, timeout: float) -> Tuple[bytes, bool]:
        return self._take(lambda buf: n if len(buf) >= n else 0, timeout)

    def read_one(self, timeout: float) -> Tuple[Optional[bytes], bool]:
        data, timed_out = self.read_exactly(1, timeout)
        if timed_out:
            return None, True
        return data, False

    # -------------------------------------------------------------------------
    # Virtual device
    # -------------------------------------------------------------------------

    def _reply_for(self, line: str) -> Optional[bytes]:
        """Build the device's reply to one command line."""
        command = line.strip()
        if self.config.drop_reply_rate and random.random() < self.config.drop_reply_rate:
            logger.warning(f"[SIMULATOR] Dropped reply to {command!r}")
            return None

        reply = self._dispatch(command)
        logger.debug(f"[SIMULATOR] {command!r} -> '{make_visible(reply.encode('ascii'))}'")
        return reply.encode("ascii")

    def _dispatch(self, command: str) -> str:
        if command in ("FT", "LU", "PCE"):
            if command == "PCE":
                self._continuous_pan = True
            return self._ack(command)

        if command in _RESET_ACKS:
            return self._reset(command)

        match = _POSITION_SET.match(command)
        if match:
            return self._set_position(command, match.group(1)[0], int(match.group(2)))

        if command in ("COL", "CEC"):
            self._control_mode = command
            return self._ack(command)

        if len(command) == 3 and command[0] in "PT" and command[1] in "HM" and command[2] in _POWER_CODES:
            return self._set_power(command)

        if command == "O":
            body, pan_motor, tilt_motor = self.config.temperatures_f
            return self._token(command, f"{self.config.voltage},{body},{pan_motor},{tilt_motor}")

        names = command.split()
        if names and all(name in self._queries for name in names):
            if len(names) == 1:
                return self._token(command, self._queries[command]())
            return self._fields(names)

        return self._error(command, "Illegal Command")

    def _ack(self, command: str) -> str:
        return f"{command} *\r\n"

    def _token(self, command: str, value: str) -> str:
        return f"{command}\r\n* {value}\r\n"

    def _error(self, command: str, text: str) -> str:
        return f"{command} ! {text}\r\n"

    def _fields(self, names) -> str:
        # The device breaks the line before the sentinel of the last field only
        parts = [f"{name} * {self._queries[name]()}\r\n" for name in names[:-1]]
        last = names[-1]
        parts.append(f"{last}\r\n* {self._queries[last]()}\r\n")
        return "".join(parts)

    def _reset(self, command: str) -> str:
        axes = {"RP": "P", "RT": "T", "RE": "PT"}[command]
        for axis in axes:
            self._initialized[axis] = True
            if axis == "P":
                self._pan = 0
            else:
                self._tilt = 0
        logger.info(f"[SIMULATOR] Axis reset {command}")
        return f"{command}\r\n{_RESET_ACKS[command]}\r\n"

    def _set_position(self, command: str, axis: str, value: int) -> str:
        if not self._initialized[axis]:
            return self._error(command, "Axis Error")
        low, high = self.config.pan_limits if axis == "P" else self.config.tilt_limits
        if not self._continuous_pan or axis == "T":
            if value < low or value > high:
                return self._error(command, "Illegal Position")
        if axis == "P":
            self._pan = value
        else:
            self._tilt = value
        return self._ack(command)

    def _set_power(self, command: str) -> str:
        axis, kind, code = command[0], command[1], command[2]
        if kind == "H":
            if code not in _HOLD_CODES:
                return self._error(command, "Illegal Argument")
            self._hold[axis] = _POWER_CODES[code]
        else:
            self._move[axis] = _POWER_CODES[code]
        return self._ack(command)
