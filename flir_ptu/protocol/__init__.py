"""
Protocol package for FLIR PTU command/response communication.
"""

from flir_ptu.protocol.transport import TransportChannel, SerialTransport
from flir_ptu.protocol.framing import BufferSanitizer, FrameReader, RawFrame, make_visible
from flir_ptu.protocol.commands import Axis, Command, ControlMode, PowerMode, ReplyShape
from flir_ptu.protocol.responses import (
    FieldRecord,
    NumericFields,
    PositionSample,
    TelemetrySample,
    Token,
)
from flir_ptu.protocol.outcomes import OutcomeKind, SessionOutcome, TimeoutStage
from flir_ptu.protocol.session import ChannelState, CommandSession, SessionState
from flir_ptu.protocol.policy import OperationClass, RecoveryAction, resolve
from flir_ptu.protocol.facade import PollResult, PTUProtocol
from flir_ptu.protocol.port_scanner import PortInfo, list_available_ports

__all__ = [
    "TransportChannel",
    "SerialTransport",
    "BufferSanitizer",
    "FrameReader",
    "RawFrame",
    "make_visible",
    "Axis",
    "Command",
    "ControlMode",
    "PowerMode",
    "ReplyShape",
    "FieldRecord",
    "NumericFields",
    "PositionSample",
    "TelemetrySample",
    "Token",
    "OutcomeKind",
    "SessionOutcome",
    "TimeoutStage",
    "ChannelState",
    "CommandSession",
    "SessionState",
    "OperationClass",
    "RecoveryAction",
    "resolve",
    "PollResult",
    "PTUProtocol",
    "PortInfo",
    "list_available_ports",
]
