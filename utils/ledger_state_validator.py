"""
Ledger State Transition Validator
=================================

Guards the round and deposit lifecycles. Both machines have a single
forward edge into a terminal state; nothing leaves a terminal state.
"""

import logging
from typing import Dict, Set, Tuple

from models import DepositStatus, RoundStatus

logger = logging.getLogger(__name__)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted"""
    pass


class RoundStateValidator:
    """active -> won | lost"""

    VALID_TRANSITIONS: Dict[RoundStatus, Set[RoundStatus]] = {
        RoundStatus.ACTIVE: {RoundStatus.WON, RoundStatus.LOST},
        RoundStatus.WON: set(),
        RoundStatus.LOST: set(),
    }

    TERMINAL_STATES: Set[RoundStatus] = {RoundStatus.WON, RoundStatus.LOST}

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return RoundStatus(status) in cls.TERMINAL_STATES

    @classmethod
    def validate_transition(cls, current: str, new: str, round_id: str = "") -> Tuple[bool, str]:
        try:
            current_status = RoundStatus(current)
            new_status = RoundStatus(new)
        except ValueError as e:
            return False, f"Unknown round status: {e}"

        if new_status in cls.VALID_TRANSITIONS[current_status]:
            return True, ""

        reason = f"Round {round_id}: {current_status.value} -> {new_status.value} is not allowed"
        logger.warning(f"🚫 ROUND_TRANSITION_BLOCKED: {reason}")
        return False, reason

    @classmethod
    def assert_transition(cls, current: str, new: str, round_id: str = "") -> None:
        valid, reason = cls.validate_transition(current, new, round_id)
        if not valid:
            raise StateTransitionError(reason)


class DepositStateValidator:
    """
    pending -> confirmed, with gateway-reported intermediate statuses in
    between. Intermediate values are free-form strings from the gateway and
    may replace each other; only confirmed is terminal.
    """

    TERMINAL_STATES: Set[str] = {DepositStatus.CONFIRMED.value}

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL_STATES

    @classmethod
    def validate_transition(cls, current: str, new: str, order_id: str = "") -> Tuple[bool, str]:
        if not new:
            return False, f"Deposit {order_id}: empty target status"

        if cls.is_terminal(current):
            reason = f"Deposit {order_id}: {current} is terminal, refusing -> {new}"
            logger.warning(f"🚫 DEPOSIT_TRANSITION_BLOCKED: {reason}")
            return False, reason

        return True, ""

    @classmethod
    def assert_transition(cls, current: str, new: str, order_id: str = "") -> None:
        valid, reason = cls.validate_transition(current, new, order_id)
        if not valid:
            raise StateTransitionError(reason)
