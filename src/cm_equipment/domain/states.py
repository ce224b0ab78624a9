"""Equipment loan state machine.

Closed set of states, a static transition table and a per-state capability
table. `transition()` is the single place that decides whether a move is
legal; it does not consult the capability flags, which are the caller's
authorization concern.

    requested               -> staff_preparing, cancelled, returned
    staff_preparing         -> ready_for_pickup, cancelled
    ready_for_pickup        -> checked_out, cancelled
    checked_out             -> overdue, dropoff_scheduled, returned
    overdue                 -> dropoff_scheduled, returned
    dropoff_scheduled       -> staff_processing_return, checked_out (reschedule)
    staff_processing_return -> returned, damage_reported
    damage_reported         -> returned
    returned, cancelled     -> terminal
"""

import logging
from dataclasses import dataclass
from enum import Enum

from src.cm_common.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class LoanState(str, Enum):
    REQUESTED = "requested"
    STAFF_PREPARING = "staff_preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    CHECKED_OUT = "checked_out"
    OVERDUE = "overdue"
    DROPOFF_SCHEDULED = "dropoff_scheduled"
    STAFF_PROCESSING_RETURN = "staff_processing_return"
    DAMAGE_REPORTED = "damage_reported"
    RETURNED = "returned"
    CANCELLED = "cancelled"


TRANSITIONS: dict[LoanState, frozenset[LoanState]] = {
    LoanState.REQUESTED: frozenset(
        {LoanState.STAFF_PREPARING, LoanState.CANCELLED, LoanState.RETURNED}
    ),
    LoanState.STAFF_PREPARING: frozenset({LoanState.READY_FOR_PICKUP, LoanState.CANCELLED}),
    LoanState.READY_FOR_PICKUP: frozenset({LoanState.CHECKED_OUT, LoanState.CANCELLED}),
    LoanState.CHECKED_OUT: frozenset(
        {LoanState.OVERDUE, LoanState.DROPOFF_SCHEDULED, LoanState.RETURNED}
    ),
    LoanState.OVERDUE: frozenset({LoanState.DROPOFF_SCHEDULED, LoanState.RETURNED}),
    LoanState.DROPOFF_SCHEDULED: frozenset(
        {LoanState.STAFF_PROCESSING_RETURN, LoanState.CHECKED_OUT}
    ),
    LoanState.STAFF_PROCESSING_RETURN: frozenset(
        {LoanState.RETURNED, LoanState.DAMAGE_REPORTED}
    ),
    LoanState.DAMAGE_REPORTED: frozenset({LoanState.RETURNED}),
    LoanState.RETURNED: frozenset(),
    LoanState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(state for state, targets in TRANSITIONS.items() if not targets)


@dataclass(frozen=True)
class StateInfo:
    description: str
    can_be_cancelled_by_member: bool = False
    requires_staff_action: bool = False
    requires_member_action: bool = False


STATE_INFO: dict[LoanState, StateInfo] = {
    LoanState.REQUESTED: StateInfo(
        "Member has requested loan - awaiting staff preparation",
        can_be_cancelled_by_member=True,
        requires_staff_action=True,
    ),
    LoanState.STAFF_PREPARING: StateInfo(
        "Staff is preparing equipment - checking condition and taking photos",
        can_be_cancelled_by_member=True,
        requires_staff_action=True,
    ),
    LoanState.READY_FOR_PICKUP: StateInfo(
        "Equipment is ready for pickup by member",
        can_be_cancelled_by_member=True,
        requires_member_action=True,
    ),
    LoanState.CHECKED_OUT: StateInfo("Equipment is checked out to member"),
    LoanState.OVERDUE: StateInfo("Equipment is past its due date"),
    LoanState.DROPOFF_SCHEDULED: StateInfo(
        "Member has scheduled equipment dropoff",
        requires_member_action=True,
    ),
    LoanState.STAFF_PROCESSING_RETURN: StateInfo(
        "Staff is inspecting returned equipment",
        requires_staff_action=True,
    ),
    LoanState.DAMAGE_REPORTED: StateInfo(
        "Damage found on return - awaiting resolution",
        requires_staff_action=True,
    ),
    LoanState.RETURNED: StateInfo("Equipment has been returned"),
    LoanState.CANCELLED: StateInfo("Loan request was cancelled"),
}


def can_transition(current: LoanState | str, target: LoanState | str) -> bool:
    return LoanState(target) in TRANSITIONS[LoanState(current)]


def transition(current: LoanState | str, target: LoanState | str) -> LoanState:
    """Return `target` if the move is allowed, else raise InvalidTransitionError."""
    current_state = LoanState(current)
    target_state = LoanState(target)
    if target_state not in TRANSITIONS[current_state]:
        logger.error(
            "Rejected loan transition %s -> %s", current_state.value, target_state.value
        )
        raise InvalidTransitionError(current_state.value, target_state.value)
    return target_state


def allowed_targets(current: LoanState | str) -> list[LoanState]:
    return sorted(TRANSITIONS[LoanState(current)], key=lambda s: s.value)


def is_terminal(state: LoanState | str) -> bool:
    return LoanState(state) in TERMINAL_STATES


def info(state: LoanState | str) -> StateInfo:
    return STATE_INFO[LoanState(state)]
