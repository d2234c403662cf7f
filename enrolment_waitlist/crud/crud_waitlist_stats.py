# enrolment_waitlist/crud/crud_waitlist_stats.py
"""Read-only projections over the waiting list."""
from datetime import datetime, timedelta
from typing import Optional, List
from sqlalchemy import func, case
from sqlalchemy.orm import Session

from enrolment_waitlist.core.config import settings
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.utils.time_utils import utcnow
from enrolment_waitlist.utils.waitlist_transitions import (
    ACTIVE_STATUSES,
    WAITING,
    OFFERED,
    ACCEPTED,
    ENROLLED,
)


def get_stats(db: Session, *, org_id: str, now: Optional[datetime] = None) -> dict:
    """
    Counts of the active population plus enrolments in the trailing window.
    `total` is waiting + offered + accepted.
    """
    now = now or utcnow()
    window_start = now - timedelta(days=settings.ENROLLED_WINDOW_DAYS)

    rows = (
        db.query(EnrolmentWaitlistEntry.status, func.count(EnrolmentWaitlistEntry.id))
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status.in_(sorted(ACTIVE_STATUSES)),
        )
        .group_by(EnrolmentWaitlistEntry.status)
        .all()
    )
    counts = {row_status: count for row_status, count in rows}

    enrolled_this_term = (
        db.query(func.count(EnrolmentWaitlistEntry.id))
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status == ENROLLED,
            EnrolmentWaitlistEntry.converted_at >= window_start,
        )
        .scalar()
    )

    waiting = counts.get(WAITING, 0)
    offered = counts.get(OFFERED, 0)
    accepted = counts.get(ACCEPTED, 0)

    return {
        "waiting": waiting,
        "offered": offered,
        "accepted": accepted,
        "enrolled_this_term": enrolled_this_term or 0,
        "total": waiting + offered + accepted,
    }


def get_by_instrument(db: Session, *, org_id: str) -> List[dict]:
    """Waiting and offered counts per instrument, largest queue first."""
    waiting_count = func.sum(case((EnrolmentWaitlistEntry.status == WAITING, 1), else_=0))
    offered_count = func.sum(case((EnrolmentWaitlistEntry.status == OFFERED, 1), else_=0))

    rows = (
        db.query(
            EnrolmentWaitlistEntry.instrument_name,
            waiting_count.label("waiting_count"),
            offered_count.label("offered_count"),
        )
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status.in_([WAITING, OFFERED]),
        )
        .group_by(EnrolmentWaitlistEntry.instrument_name)
        .all()
    )

    breakdown = [
        {
            "instrument_name": row.instrument_name,
            "waiting_count": int(row.waiting_count or 0),
            "offered_count": int(row.offered_count or 0),
            "total": int(row.waiting_count or 0) + int(row.offered_count or 0),
        }
        for row in rows
    ]
    breakdown.sort(key=lambda b: (-b["total"], b["instrument_name"]))
    return breakdown
