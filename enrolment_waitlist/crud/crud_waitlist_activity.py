# enrolment_waitlist/crud/crud_waitlist_activity.py
from typing import Optional, List
from sqlalchemy.orm import Session

from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.models.waitlist_activity import WaitlistActivity


def log_activity(
    db: Session,
    *,
    entry: EnrolmentWaitlistEntry,
    activity_type: str,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    user_id: Optional[str] = None,
) -> WaitlistActivity:
    """
    Append one activity row for `entry`.

    Does not commit: the row joins the caller's transaction so it lands
    together with the state change it describes.
    """
    activity = WaitlistActivity(
        organization_id=entry.organization_id,
        waitlist_id=entry.id,
        activity_type=activity_type,
        description=description,
        activity_metadata=metadata or {},
        created_by=user_id,
    )
    db.add(activity)
    return activity


def get_for_entry(
    db: Session, *, org_id: str, waitlist_id: str
) -> List[WaitlistActivity]:
    """Activity log for one entry, newest first."""
    return (
        db.query(WaitlistActivity)
        .filter(
            WaitlistActivity.organization_id == org_id,
            WaitlistActivity.waitlist_id == waitlist_id,
        )
        .order_by(WaitlistActivity.created_at.desc(), WaitlistActivity.id.desc())
        .all()
    )
