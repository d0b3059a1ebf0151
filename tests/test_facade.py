"""Tests for the typed protocol facade and the handshake."""

import math

from flir_ptu.config.models import TransportConfig
from flir_ptu.protocol.commands import Axis
from flir_ptu.protocol.facade import PTUProtocol
from flir_ptu.protocol.outcomes import (
    EchoMismatch,
    MalformedFrame,
    OutcomeKind,
    Rejected,
    Timeout,
    TimeoutStage,
)
from flir_ptu.protocol.responses import PositionSample, TelemetrySample

from tests.conftest import BANNER, HANDSHAKE_REPLIES, ScriptedTransport


def test_handshake_success(scripted, transport_config, protocol_logger):
    protocol = PTUProtocol(scripted, transport_config, protocol_logger=protocol_logger)
    outcome = protocol.handshake()

    assert outcome
    assert "Initializing...*" in outcome.response.value
    assert protocol.handshake_complete
    assert scripted.written_commands() == ["FT", "LU", "PCE", "PP0"]


def test_handshake_with_terse_feedback_only_ack():
    """Banner, success marker, then the FT echo and its ack."""
    transport = ScriptedTransport(
        inbox=b"### PAN-TILT CONTROLLER\r\nInitializing...*\r\n",
        replies={"FT": b"FT\r\n*\r\n", "LU": b"LU *\r\n", "PCE": b"PCE *\r\n", "PP0": b"PP0 *\r\n"},
    )
    protocol = PTUProtocol(transport, TransportConfig(drain_byte_timeout_seconds=0.01))
    assert protocol.handshake()


def test_handshake_without_banner_marker_sends_nothing(transport_config):
    transport = ScriptedTransport(
        inbox=BANNER.replace(b"Initializing...*", b""),
        replies=HANDSHAKE_REPLIES,
    )
    protocol = PTUProtocol(transport, transport_config)
    outcome = protocol.handshake()

    assert isinstance(outcome, Timeout)
    assert outcome.stage is TimeoutStage.BANNER
    assert "write" not in transport.ops()
    assert not protocol.handshake_complete


def test_handshake_banner_without_marker_text_is_malformed(transport_config):
    transport = ScriptedTransport(inbox=b"garbage*\r\n", replies=HANDSHAKE_REPLIES)
    outcome = PTUProtocol(transport, transport_config).handshake()
    assert isinstance(outcome, MalformedFrame)
    assert not transport.written


def test_handshake_aborts_on_first_failure(transport_config):
    replies = dict(HANDSHAKE_REPLIES, LU=b"LX *\r\n")
    transport = ScriptedTransport(inbox=BANNER, replies=replies)
    protocol = PTUProtocol(transport, transport_config)
    outcome = protocol.handshake()

    assert isinstance(outcome, EchoMismatch)
    assert transport.written_commands() == ["FT", "LU"]
    assert not protocol.handshake_complete


def test_handshake_axis_error_on_pp0(transport_config):
    replies = dict(HANDSHAKE_REPLIES, PP0=b"PP0 ! Axis Error\r\n")
    transport = ScriptedTransport(inbox=BANNER, replies=replies)
    outcome = PTUProtocol(transport, transport_config).handshake()
    assert outcome.kind is OutcomeKind.DEVICE_ERROR


def test_operations_rejected_before_handshake(transport_config):
    transport = ScriptedTransport()
    protocol = PTUProtocol(transport, transport_config)
    outcome = protocol.query_token("PH")
    assert isinstance(outcome, Rejected)
    assert not transport.trace


def test_query_float(ready_protocol, scripted):
    scripted.add_reply("PR", b"PR\r\n* 46.2857\r\n")
    assert ready_protocol.query_float("PR") == 46.2857


def test_query_float_nan_on_failure(ready_protocol, scripted):
    assert math.isnan(ready_protocol.query_float("PR"))
    scripted.add_reply("TR", b"TR\r\n* fast\r\n")
    assert math.isnan(ready_protocol.query_float("TR"))
    scripted.add_reply("PR", b"PR\r\n* nan\r\n")
    assert math.isnan(ready_protocol.query_float("PR"))


def test_query_int(ready_protocol, scripted):
    scripted.add_reply("CPEC", b"CPEC\r\n* 3\r\n")
    assert ready_protocol.query_int("CPEC") == 3
    assert ready_protocol.query_int("CTEC") is None


def test_query_int_rejects_fractional_counts(ready_protocol, scripted):
    """A fractional correction count is not truncated to an integer."""
    scripted.add_reply("CPEC", b"CPEC\r\n* 3.7\r\n")
    scripted.add_reply("CTEC", b"CTEC\r\n* -2\r\n")
    assert ready_protocol.query_int("CPEC") is None
    assert ready_protocol.query_int("CTEC") == -2


def test_query_position(ready_protocol, scripted):
    scripted.add_reply("PP TP", b"PP * -5\r\nTP\r\n* 12\r\n")
    assert ready_protocol.query_position().response == PositionSample(-5, 12)


def test_query_fields(ready_protocol, scripted):
    scripted.add_reply("PH TH", b"PH * LOW\r\nTH\r\n* REG\r\n")
    outcome = ready_protocol.query_fields(["ph", "th"])
    assert outcome.response.as_dict() == {"PH": "LOW", "TH": "REG"}


def test_run_and_verify(ready_protocol, scripted):
    scripted.add_reply("PHL", b"PHL *\r\n")
    scripted.add_reply("PHR", b"PHX *\r\n")
    assert ready_protocol.run_and_verify("PHL") is True
    assert ready_protocol.run_and_verify("PHR") is False


def test_reset_axis_reads_as_boolean(ready_protocol, scripted):
    scripted.add_reply("RT", b"RT\r\n!T!T*\r\n")
    assert ready_protocol.reset_axis(Axis.TILT)
    assert not ready_protocol.reset_axis(Axis.TILT)


def test_refresh_telemetry_and_position(ready_protocol, scripted):
    scripted.add_reply("O", b"O\r\n* 12.1,75.0,80.0,78.5\r\n")
    scripted.add_reply("CPEC", b"CPEC\r\n* 0\r\n")
    scripted.add_reply("CTEC", b"CTEC\r\n* 2\r\n")
    scripted.add_reply("PP TP", b"PP * 100\r\nTP\r\n* 600\r\n")

    result = ready_protocol.refresh_telemetry_and_position()

    assert result.ok
    assert result.telemetry == TelemetrySample(12.1, 75.0, 80.0, 78.5)
    assert result.pan_corrections == 0
    assert result.tilt_corrections == 2
    assert result.position == PositionSample(100, 600)
    assert scripted.written_commands() == ["O", "CPEC", "CTEC", "PP TP"]


def test_refresh_keeps_going_after_poll_failure(ready_protocol, scripted):
    scripted.add_reply("O", b"O\r\n* 12.1,75.0\r\n")
    scripted.add_reply("PP TP", b"PP * 1\r\nTP\r\n* 2\r\n")

    result = ready_protocol.refresh_telemetry_and_position()

    assert not result.ok
    assert not result.fatal
    assert result.telemetry is None
    assert result.position == PositionSample(1, 2)
    assert [text for text, _ in result.failures()] == ["O", "CPEC", "CTEC"]


def test_refresh_stops_on_channel_failure(ready_protocol, scripted):
    scripted.fail_writes = True
    result = ready_protocol.refresh_telemetry_and_position()
    assert result.fatal
    assert len(result.outcomes) == 1


def test_outcome_sink_sees_every_exchange(scripted, transport_config):
    seen = []
    protocol = PTUProtocol(scripted, transport_config, on_outcome=lambda text, o: seen.append((text, o.ok)))
    protocol.handshake()
    assert seen == [("banner", True), ("FT", True), ("LU", True), ("PCE", True), ("PP0", True)]


def test_protocol_log_records_traffic(ready_protocol, scripted, protocol_logger):
    scripted.add_reply("PH", b"PH\r\n* OFF\r\n")
    protocol_logger.clear()
    ready_protocol.query_token("PH")
    directions = [m["direction"] for m in protocol_logger.get_messages()]
    assert directions == ["TX", "RX", "RX"]
