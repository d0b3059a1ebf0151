"""Shared fixtures: a scripted transport that records every channel operation."""

from collections import defaultdict, deque
from typing import Dict, List, Optional, Tuple

import pytest

from flir_ptu.config.models import PTUConfig, SimulatorConfig, TransportConfig
from flir_ptu.protocol.facade import PTUProtocol
from flir_ptu.protocol.logger import ProtocolLogger
from flir_ptu.protocol.transport import TransportChannel, check_timeout
from flir_ptu.utils.exceptions import ChannelIOError


BANNER = (
    b"\r\n\r\n### PAN-TILT CONTROLLER\r\n"
    b"### v3.3.0, (C)2010-2011 FLIR Commercial Systems, Inc., All Rights Reserved\r\n"
    b"Initializing...*\r\n"
)

HANDSHAKE_REPLIES = {
    "FT": b"FT *\r\n",
    "LU": b"LU *\r\n",
    "PCE": b"PCE *\r\n",
    "PP0": b"PP0 *\r\n",
}


class ScriptedTransport(TransportChannel):
    """
    Transport driven by a script instead of a device.

    ``inbox`` holds bytes already waiting on the channel. ``replies`` maps a
    command line (without CR LF) to replies queued when that line is
    written. Reads never wait: a missing terminator is an immediate timeout.
    """

    def __init__(self, inbox: bytes = b"", replies: Optional[Dict[str, object]] = None):
        self.inbox = bytearray(inbox)
        self.replies: Dict[str, deque] = defaultdict(deque)
        for text, reply in (replies or {}).items():
            self.add_reply(text, reply)
        self.trace: List[Tuple[str, Optional[bytes]]] = []
        self.written: List[bytes] = []
        self.fail_writes = False
        self._open = True

    def add_reply(self, text: str, reply) -> None:
        if isinstance(reply, (list, tuple)):
            self.replies[text].extend(reply)
        else:
            self.replies[text].append(reply)

    def feed(self, data: bytes) -> None:
        self.inbox += data

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def write(self, data: bytes) -> int:
        if self.fail_writes or not self._open:
            raise ChannelIOError("write failed")
        self.trace.append(("write", data))
        self.written.append(data)
        queue = self.replies.get(data.decode("ascii").rstrip("\r\n"))
        if queue:
            self.inbox += queue.popleft()
        return len(data)

    def read_until(self, terminator: bytes, timeout: float) -> Tuple[bytes, bool]:
        check_timeout(timeout)
        idx = self.inbox.find(terminator)
        if idx < 0:
            data = bytes(self.inbox)
            self.inbox.clear()
            self.trace.append(("read_until", data))
            return data, True
        data = bytes(self.inbox[:idx + 1])
        del self.inbox[:idx + 1]
        self.trace.append(("read_until", data))
        return data, False

    def read_exactly(self, n: int, timeout: float) -> Tuple[bytes, bool]:
        check_timeout(timeout)
        data = bytes(self.inbox[:n])
        del self.inbox[:n]
        self.trace.append(("read_exactly", data))
        return data, len(data) < n

    def read_one(self, timeout: float) -> Tuple[Optional[bytes], bool]:
        check_timeout(timeout)
        if not self.inbox:
            self.trace.append(("read_one", None))
            return None, True
        byte = bytes(self.inbox[:1])
        del self.inbox[:1]
        self.trace.append(("read_one", byte))
        return byte, False

    def ops(self) -> List[str]:
        return [op for op, _ in self.trace]

    def written_commands(self) -> List[str]:
        return [data.decode("ascii").rstrip("\r\n") for data in self.written]


@pytest.fixture
def transport_config():
    return TransportConfig(
        port="socket://localhost:4000",
        timeout_seconds=0.05,
        handshake_timeout_seconds=0.05,
        drain_byte_timeout_seconds=0.01,
        reset_timeout_seconds=0.2,
    )


@pytest.fixture
def protocol_logger():
    return ProtocolLogger()


@pytest.fixture
def scripted():
    return ScriptedTransport(inbox=BANNER, replies=HANDSHAKE_REPLIES)


@pytest.fixture
def ready_protocol(scripted, transport_config, protocol_logger):
    """Facade whose handshake already succeeded."""
    protocol = PTUProtocol(scripted, transport_config, protocol_logger=protocol_logger)
    assert protocol.handshake()
    scripted.trace.clear()
    scripted.written.clear()
    return protocol


@pytest.fixture
def simulator_config():
    return SimulatorConfig(enabled=True)


@pytest.fixture
def ptu_config():
    return PTUConfig(poll_on_connect=False)
