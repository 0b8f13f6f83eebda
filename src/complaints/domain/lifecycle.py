"""
Complaint Lifecycle
===================

The complaint state machine.

Escalation is not a status: it raises ``escalation_level`` and leaves the
status untouched. ``withdrawn`` is reachable from every non-terminal status.
"""

from typing import Dict, FrozenSet

from src.config import ComplaintStatus, TERMINAL_STATUSES
from src.core import InvalidTransitionException

S = ComplaintStatus

_FORWARD: Dict[ComplaintStatus, FrozenSet[ComplaintStatus]] = {
    S.SUBMITTED: frozenset({S.ACKNOWLEDGED}),
    S.ACKNOWLEDGED: frozenset({S.IN_PROGRESS}),
    S.IN_PROGRESS: frozenset({S.PENDING_INFO, S.RESOLVED}),
    S.PENDING_INFO: frozenset({S.IN_PROGRESS}),
    S.RESOLVED: frozenset({S.VERIFIED, S.REOPENED}),
    S.VERIFIED: frozenset({S.CLOSED}),
    S.REOPENED: frozenset({S.IN_PROGRESS}),
    S.CLOSED: frozenset({S.REOPENED}),
    S.WITHDRAWN: frozenset(),
}

TRANSITIONS: Dict[ComplaintStatus, FrozenSet[ComplaintStatus]] = {
    status: targets | ({S.WITHDRAWN} if status not in TERMINAL_STATUSES else frozenset())
    for status, targets in _FORWARD.items()
}

# Targets only the resolution workflow may move a ticket into.
WORKFLOW_TARGETS: Dict[ComplaintStatus, str] = {
    S.RESOLVED: "submit_resolution",
    S.VERIFIED: "verify_resolution",
    S.REOPENED: "reopen",
}


def is_terminal(status: ComplaintStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: ComplaintStatus, to_status: ComplaintStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def ensure_transition(from_status: ComplaintStatus, to_status: ComplaintStatus) -> None:
    """
    Raise unless ``from_status -> to_status`` is an edge of the state machine.

    Raises:
        InvalidTransitionException: for any edge not in ``TRANSITIONS``
    """
    if not can_transition(from_status, to_status):
        raise InvalidTransitionException(
            f"Cannot move complaint from '{from_status.value}' to '{to_status.value}'",
            from_status=from_status.value,
            to_status=to_status.value,
        )
