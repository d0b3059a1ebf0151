"""Tests for the PTU controller: indicators, recovery policy and teardown."""

import pytest

from flir_ptu.config.models import SimulatorConfig
from flir_ptu.protocol.commands import Axis, ControlMode, PowerMode
from flir_ptu.protocol.outcomes import Timeout
from flir_ptu.protocol.responses import PositionSample
from flir_ptu.ptu import state
from flir_ptu.ptu.controller import PTUController
from flir_ptu.ptu.state import PropertyState, steps_to_degrees
from flir_ptu.simulator.mock_ptu import SimulatedPTUTransport
from flir_ptu.utils.exceptions import (
    ChannelIOError,
    CommandFailedError,
    HandshakeError,
    InvalidValueError,
    NotConnectedError,
)

from tests.conftest import BANNER, HANDSHAKE_REPLIES, ScriptedTransport


@pytest.fixture
def sim(simulator_config):
    return SimulatedPTUTransport(simulator_config)


@pytest.fixture
def controller(sim, transport_config, ptu_config, protocol_logger):
    ptu = PTUController(sim, transport_config, ptu_config, protocol_logger=protocol_logger)
    ptu.connect()
    yield ptu
    ptu.disconnect()


def test_connect_reads_settings_and_polls(controller):
    status = controller.status()
    assert status.connected
    assert status.pan.hold_power == "REG"
    assert status.tilt.move_power == "REG"
    assert status.control_mode == "CEC"
    assert status.pan.resolution_arcsec == pytest.approx(46.2857)
    assert (status.tilt.min_limit, status.tilt.max_limit) == (-6999.0, 3500.0)
    assert status.pan.position_steps == 0
    assert status.telemetry.voltage == 12.1
    assert status.indicators[state.CONNECTION] == "Ok"
    assert status.indicators[state.POSITION] == "Ok"
    assert status.indicators[state.CORRECTIONS] == "Ok"
    assert status.last_poll is not None


def test_steps_to_degrees():
    assert steps_to_degrees(7, 3600.0) == 7.0
    assert steps_to_degrees(None, 46.2857) is None
    assert steps_to_degrees(10, None) is None


def test_set_commands_update_state(controller):
    controller.set_move_power(Axis.TILT, PowerMode.HIGH)
    controller.set_control_mode(ControlMode.OPEN_LOOP)
    status = controller.status()
    assert status.tilt.move_power == "HIGH"
    assert status.control_mode == "COL"
    assert controller.indicator(state.MOVE_POWER) is PropertyState.OK


def test_invalid_hold_power_is_rejected_before_io(controller, protocol_logger):
    protocol_logger.clear()
    with pytest.raises(InvalidValueError):
        controller.set_hold_power(Axis.PAN, PowerMode.HIGH)
    assert protocol_logger.get_stats()["tx_count"] == 0


def test_failed_user_command_raises_and_alerts(controller, sim):
    sim.config.drop_reply_rate = 1.0
    with pytest.raises(CommandFailedError) as excinfo:
        controller.set_hold_power(Axis.TILT, PowerMode.OFF)
    assert isinstance(excinfo.value.outcome, Timeout)
    assert controller.indicator(state.HOLD_POWER) is PropertyState.ALERT
    assert controller.status().tilt.hold_power == "REG"


def test_reset_axis_success(controller, sim):
    controller.reset_axis(Axis.PAN)
    assert controller.indicator(state.RESET) is PropertyState.OK


def test_reset_axis_timeout_leaves_alert(controller, sim):
    sim.config.drop_reply_rate = 1.0
    with pytest.raises(CommandFailedError):
        controller.reset_axis(Axis.PAN)
    assert controller.indicator(state.RESET) is PropertyState.ALERT


def test_failed_poll_keeps_previous_value(controller, sim):
    before = controller.get_position()
    sim.config.drop_reply_rate = 1.0
    result = controller.refresh()
    assert not result.ok
    assert controller.get_position() == before
    assert controller.indicator(state.POSITION) is PropertyState.ALERT
    assert controller.connected


def test_corrections_raise_alert(controller, sim):
    sim.set_corrections(0, 3)
    controller.refresh()
    assert controller.indicator(state.CORRECTIONS) is PropertyState.ALERT
    assert controller.status().tilt.corrections == 3


def test_channel_failure_tears_down(controller, sim):
    sim.close()
    with pytest.raises(ChannelIOError):
        controller.refresh()
    assert not controller.connected
    assert controller.indicator(state.CONNECTION) is PropertyState.ALERT
    with pytest.raises(NotConnectedError):
        controller.get_position()


def test_handshake_failure_closes_transport(transport_config, ptu_config, protocol_logger):
    sim = SimulatedPTUTransport(SimulatorConfig(enabled=True, axes_initialized=False))
    ptu = PTUController(sim, transport_config, ptu_config, protocol_logger=protocol_logger)
    with pytest.raises(HandshakeError):
        ptu.connect()
    assert not sim.is_open
    assert not ptu.connected
    assert ptu.indicator(state.CONNECTION) is PropertyState.ALERT


def test_operations_require_connection(sim, transport_config, ptu_config):
    ptu = PTUController(sim, transport_config, ptu_config)
    with pytest.raises(NotConnectedError):
        ptu.refresh()
    with pytest.raises(NotConnectedError):
        ptu.set_control_mode(ControlMode.ENCODER)


def test_scripted_connect_without_settings(transport_config, ptu_config, protocol_logger):
    ptu_config.read_settings_on_connect = False
    transport = ScriptedTransport(inbox=BANNER, replies={
        **HANDSHAKE_REPLIES,
        "O": b"O\r\n* 12.0,70.0,71.0,72.0\r\n",
        "CPEC": b"CPEC\r\n* 0\r\n",
        "CTEC": b"CTEC\r\n* 0\r\n",
        "PP TP": b"PP * 10\r\nTP\r\n* 20\r\n",
    })
    ptu = PTUController(transport, transport_config, ptu_config, protocol_logger=protocol_logger)
    ptu.connect()
    assert ptu.get_position() == PositionSample(10, 20)
    assert transport.written_commands() == ["FT", "LU", "PCE", "PP0", "O", "CPEC", "CTEC", "PP TP"]
