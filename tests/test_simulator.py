"""Tests for the byte-level simulator driven through the real protocol engine."""

import pytest

from flir_ptu.config.models import SimulatorConfig
from flir_ptu.protocol.commands import Axis
from flir_ptu.protocol.facade import PTUProtocol
from flir_ptu.protocol.outcomes import AxisNotInitialized, DeviceError, OutcomeKind, TimeoutStage
from flir_ptu.protocol.responses import PositionSample, TelemetrySample
from flir_ptu.simulator.mock_ptu import SimulatedPTUTransport
from flir_ptu.utils.exceptions import ChannelIOError


def connect(config, transport_config, protocol_logger):
    sim = SimulatedPTUTransport(config)
    sim.open()
    protocol = PTUProtocol(sim, transport_config, protocol_logger=protocol_logger)
    return sim, protocol


@pytest.fixture
def sim_protocol(simulator_config, transport_config, protocol_logger):
    sim, protocol = connect(simulator_config, transport_config, protocol_logger)
    assert protocol.handshake()
    yield sim, protocol
    sim.close()


def test_open_emits_banner(simulator_config):
    sim = SimulatedPTUTransport(simulator_config)
    sim.open()
    data, timed_out = sim.read_until(b"*", 0.1)
    assert not timed_out
    assert data.endswith(b"Initializing...*")
    assert sim.read_exactly(2, 0.1) == (b"\r\n", False)


def test_read_on_closed_simulator_fails(simulator_config):
    sim = SimulatedPTUTransport(simulator_config)
    with pytest.raises(ChannelIOError):
        sim.read_one(0.01)


def test_position_and_telemetry(sim_protocol, simulator_config):
    _, protocol = sim_protocol
    assert protocol.query_position().response == PositionSample(0, simulator_config.initial_tilt)
    assert protocol.query_telemetry().response == TelemetrySample(12.1, 75.0, 80.0, 78.5)


def test_multi_field_query(sim_protocol):
    _, protocol = sim_protocol
    outcome = protocol.query_fields(["PP", "TP", "PH", "TH", "PM", "TM"])
    assert outcome.response.as_dict() == {
        "PP": "0", "TP": "0", "PH": "REG", "TH": "REG", "PM": "REG", "TM": "REG",
    }


def test_power_and_control_mode_commands(sim_protocol):
    _, protocol = sim_protocol
    assert protocol.run_and_verify("PHL")
    assert protocol.run_and_verify("TMH")
    assert protocol.run_and_verify("COL")
    assert protocol.query_token("PH").response.value == "LOW"
    assert protocol.query_token("TM").response.value == "HIGH"
    assert protocol.query_token("CT").response.value == "COL"


def test_illegal_hold_power_is_device_error(sim_protocol):
    _, protocol = sim_protocol
    outcome = protocol.send_and_expect("PHH")
    assert isinstance(outcome, DeviceError)


def test_unknown_query_is_device_error(sim_protocol):
    _, protocol = sim_protocol
    assert protocol.query_token("ZZ").kind is OutcomeKind.DEVICE_ERROR


def test_encoder_corrections(sim_protocol):
    sim, protocol = sim_protocol
    sim.set_corrections(4, 0)
    result = protocol.refresh_telemetry_and_position()
    assert result.ok
    assert (result.pan_corrections, result.tilt_corrections) == (4, 0)


def test_reset_axes(sim_protocol, protocol_logger):
    _, protocol = sim_protocol
    assert protocol.send_and_expect("TP500")
    assert protocol.reset_axis(Axis.BOTH)
    assert protocol.query_position().response == PositionSample(0, 0)
    # The reset ack line was read in full, nothing left to drain
    assert protocol_logger.get_stats()["drain_count"] == 0


def test_residual_bytes_are_drained(transport_config, protocol_logger):
    config = SimulatorConfig(enabled=True, residual_bytes="\r\n")
    sim, protocol = connect(config, transport_config, protocol_logger)
    assert protocol.handshake()
    assert protocol.query_token("PM").response.value == "REG"
    assert protocol_logger.get_stats()["drain_count"] > 0


def test_uninitialized_axes_fail_handshake(transport_config, protocol_logger):
    config = SimulatorConfig(enabled=True, axes_initialized=False)
    _, protocol = connect(config, transport_config, protocol_logger)
    outcome = protocol.handshake()
    assert isinstance(outcome, AxisNotInitialized)
    assert not protocol.handshake_complete


def test_dropped_replies_time_out(transport_config, protocol_logger):
    config = SimulatorConfig(enabled=True, drop_reply_rate=1.0)
    _, protocol = connect(config, transport_config, protocol_logger)
    outcome = protocol.handshake()
    assert outcome.kind is OutcomeKind.TIMEOUT
    assert outcome.stage is TimeoutStage.ECHO
