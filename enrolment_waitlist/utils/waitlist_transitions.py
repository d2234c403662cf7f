# enrolment_waitlist/utils/waitlist_transitions.py
"""
Status graph for enrolment waitlist entries.

Every status change goes through validate_status_transition so the
allowed edges live in one place.
"""

from fastapi import HTTPException, status

WAITING = "waiting"
OFFERED = "offered"
ACCEPTED = "accepted"
DECLINED = "declined"
EXPIRED = "expired"
WITHDRAWN = "withdrawn"
LOST = "lost"
ENROLLED = "enrolled"

TERMINAL_STATUSES = frozenset({ENROLLED, WITHDRAWN, DECLINED, EXPIRED, LOST})
ACTIVE_STATUSES = frozenset({WAITING, OFFERED, ACCEPTED})

VALID_TRANSITIONS = {
    WAITING: {OFFERED, EXPIRED, WITHDRAWN, LOST},
    OFFERED: {ACCEPTED, DECLINED, EXPIRED, WITHDRAWN, LOST},
    ACCEPTED: {ENROLLED, WITHDRAWN, LOST},
    DECLINED: set(),   # Terminal state
    EXPIRED: set(),    # Terminal state
    WITHDRAWN: set(),  # Terminal state
    LOST: set(),       # Terminal state
    ENROLLED: set(),   # Terminal state
}


def is_terminal(current_status: str) -> bool:
    return current_status in TERMINAL_STATUSES


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in VALID_TRANSITIONS.get(current_status, set())


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if status transition is allowed.

    Raises:
        HTTPException: 422 if the edge is not in the graph
    """
    if not can_transition(current_status, new_status):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid status transition: {current_status} → {new_status}",
        )
    return True


def require_status(entry, expected: str, action: str):
    """Reject an operation unless the entry is currently in `expected`."""
    if entry.status != expected:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"Cannot {action}: entry must be '{expected}' "
                f"(current: '{entry.status}')"
            ),
        )
