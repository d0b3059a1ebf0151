"""
Recovery policy keyed by operation class.

Retry and fatal decisions live in one table instead of at each call site.
Nothing is retried automatically: a failed poll waits for the next cycle,
a failed handshake command aborts the handshake.
"""

from enum import Enum
from typing import Dict

from flir_ptu.protocol.outcomes import OutcomeKind, SessionOutcome


class OperationClass(Enum):
    HANDSHAKE = "handshake"
    POLL = "poll"
    USER_COMMAND = "user_command"


class RecoveryAction(Enum):
    ACCEPT = "accept"                    # use the result
    ABORT_HANDSHAKE = "abort_handshake"  # connection reported unestablished
    KEEP_PREVIOUS = "keep_previous"      # log, keep last value, retry next cycle
    REPORT_ALERT = "report_alert"        # set the alert indicator, tell the caller
    RECONNECT = "reconnect"              # tear the connection down


_ON_FAILURE: Dict[OperationClass, RecoveryAction] = {
    OperationClass.HANDSHAKE: RecoveryAction.ABORT_HANDSHAKE,
    OperationClass.POLL: RecoveryAction.KEEP_PREVIOUS,
    OperationClass.USER_COMMAND: RecoveryAction.REPORT_ALERT,
}


RECOVERY_POLICY: Dict[OperationClass, Dict[OutcomeKind, RecoveryAction]] = {
    op_class: {
        kind: (
            RecoveryAction.ACCEPT if kind is OutcomeKind.SUCCESS
            else RecoveryAction.RECONNECT if kind is OutcomeKind.CHANNEL_IO_ERROR
            else failure_action
        )
        for kind in OutcomeKind
    }
    for op_class, failure_action in _ON_FAILURE.items()
}


def resolve(op_class: OperationClass, outcome: SessionOutcome) -> RecoveryAction:
    """Look up what the caller should do with an outcome."""
    return RECOVERY_POLICY[op_class][outcome.kind]
