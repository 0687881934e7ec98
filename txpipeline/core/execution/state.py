"""
Transaction lifecycle transitions.
"""

from typing import Dict, FrozenSet

from .models import TxStatus


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed by the transition table."""

    def __init__(self, from_status: TxStatus, to_status: TxStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


_FAIL = frozenset({TxStatus.FAILED, TxStatus.REJECTED})

# failed and rejected are reachable from every non-terminal state
TRANSITIONS: Dict[TxStatus, FrozenSet[TxStatus]] = {
    TxStatus.PENDING: frozenset({TxStatus.SIMULATED}) | _FAIL,
    TxStatus.SIMULATED: frozenset({TxStatus.APPROVED}) | _FAIL,
    TxStatus.APPROVED: frozenset({TxStatus.SIGNED}) | _FAIL,
    TxStatus.SIGNED: frozenset({TxStatus.BROADCAST}) | _FAIL,
    TxStatus.BROADCAST: frozenset({TxStatus.CONFIRMED}) | _FAIL,
    TxStatus.CONFIRMED: frozenset(),
    TxStatus.FAILED: frozenset(),
    TxStatus.REJECTED: frozenset(),
}


def can_transition(from_status: TxStatus, to_status: TxStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: TxStatus, to_status: TxStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
