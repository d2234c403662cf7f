# enrolment_waitlist/models/waitlist_activity.py
import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from enrolment_waitlist.db.base_class import Base, JSONBType


class WaitlistActivity(Base):
    """
    Append-only history of a waitlist entry.

    Activity types:
    - created: Family added to the waiting list
    - updated: Contact, child or preference fields edited
    - priority_changed: Priority edited (old/new in metadata)
    - position_changed: Entry moved within its instrument queue
    - offered: Slot offered
    - accepted / declined: Family responded to the offer
    - expired: Offer deadline or waiting age exceeded
    - withdrawn: Family left the waiting list
    - lost: Marked unresponsive by an administrator
    - enrolled: Converted to a student
    """
    __tablename__ = "enrolment_waitlist_activity"

    id = Column(String, primary_key=True, default=lambda: f"ewa_{uuid.uuid4().hex[:12]}")
    organization_id = Column(String, nullable=False, index=True)
    waitlist_id = Column(
        String, ForeignKey("enrolment_waitlist.id"), nullable=False, index=True
    )
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    # 'metadata' is reserved on declarative classes, so the attribute is renamed
    activity_metadata = Column("metadata", JSONBType, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    entry = relationship("EnrolmentWaitlistEntry", back_populates="activities")
