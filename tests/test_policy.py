"""Tests for the recovery policy table."""

import pytest

from flir_ptu.protocol.outcomes import (
    ChannelFailure,
    DeviceError,
    EchoMismatch,
    MalformedFrame,
    OutcomeKind,
    Rejected,
    Success,
    Timeout,
    TimeoutStage,
)
from flir_ptu.protocol.policy import RECOVERY_POLICY, OperationClass, RecoveryAction, resolve
from flir_ptu.protocol.responses import Token


FAILURES = [
    Timeout(TimeoutStage.ECHO),
    MalformedFrame("bad"),
    EchoMismatch("FT", "FTX"),
    DeviceError("! Illegal Command"),
    Rejected("too long"),
]


def test_every_class_covers_every_kind():
    for op_class in OperationClass:
        assert set(RECOVERY_POLICY[op_class]) == set(OutcomeKind)


@pytest.mark.parametrize("op_class", list(OperationClass))
def test_success_is_accepted(op_class):
    assert resolve(op_class, Success(Token("OK"))) is RecoveryAction.ACCEPT


@pytest.mark.parametrize("op_class", list(OperationClass))
def test_channel_failure_always_reconnects(op_class):
    assert resolve(op_class, ChannelFailure("gone")) is RecoveryAction.RECONNECT


@pytest.mark.parametrize("outcome", FAILURES)
def test_failures_by_operation_class(outcome):
    assert resolve(OperationClass.HANDSHAKE, outcome) is RecoveryAction.ABORT_HANDSHAKE
    assert resolve(OperationClass.POLL, outcome) is RecoveryAction.KEEP_PREVIOUS
    assert resolve(OperationClass.USER_COMMAND, outcome) is RecoveryAction.REPORT_ALERT
