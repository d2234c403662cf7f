# enrolment_waitlist/models/enrolment_waitlist.py
import uuid
from sqlalchemy import (
    CheckConstraint, Column, String, Text, Integer, DateTime, Time, ForeignKey, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from enrolment_waitlist.db.base_class import Base, JSONBType


class EnrolmentWaitlistEntry(Base):
    """
    One family's request for lesson capacity on a given instrument.

    Queue ordering lives in `position`, which is only meaningful while the
    entry is `waiting`; it is cleared when the entry leaves the queue.
    Waiting entries of one (organization_id, instrument_name) partition hold
    positions 1..N with no gaps.
    """
    __tablename__ = "enrolment_waitlist"

    id = Column(
        String, primary_key=True, default=lambda: f"ewl_{uuid.uuid4().hex[:12]}"
    )
    organization_id = Column(String, nullable=False, index=True)
    lead_id = Column(String, nullable=True)  # No FK - leads live in the CRM

    # Contact
    contact_name = Column(String, nullable=False)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    guardian_id = Column(
        String, ForeignKey("guardians.id", ondelete="SET NULL"), nullable=True
    )

    # Child
    child_first_name = Column(String, nullable=False)
    child_last_name = Column(String, nullable=True)
    child_age = Column(Integer, nullable=True)

    # Subject
    instrument_id = Column(String, nullable=True)
    instrument_name = Column(String, nullable=False)
    lesson_duration_mins = Column(Integer, nullable=False, server_default=text("30"))

    # Preferences
    preferred_teacher_id = Column(String, nullable=True)
    preferred_location_id = Column(String, nullable=True)
    preferred_days = Column(JSONBType, nullable=True)  # ["monday", "wednesday"]
    preferred_time_earliest = Column(Time, nullable=True)
    preferred_time_latest = Column(Time, nullable=True)
    experience_level = Column(String, nullable=True)

    # Queue state
    position = Column(Integer, nullable=True)
    status = Column(
        String, nullable=False, server_default=text("'waiting'")
    )  # waiting, offered, accepted, declined, expired, withdrawn, lost, enrolled
    priority = Column(
        String, nullable=False, server_default=text("'normal'")
    )  # normal, high, urgent
    source = Column(
        String, nullable=False, server_default=text("'manual'")
    )  # manual, lead_pipeline, booking_page, parent_portal, website

    # Offer (all set together by OfferSlot)
    offered_slot_day = Column(String, nullable=True)
    offered_slot_time = Column(Time, nullable=True)
    offered_teacher_id = Column(String, nullable=True)
    offered_location_id = Column(String, nullable=True)
    offered_rate_minor = Column(Integer, nullable=True)
    offered_at = Column(DateTime(timezone=True), nullable=True)
    offer_expires_at = Column(DateTime(timezone=True), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Outcome
    converted_student_id = Column(
        String, ForeignKey("students.id", ondelete="SET NULL"), nullable=True
    )
    converted_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    activities = relationship(
        "WaitlistActivity",
        back_populates="entry",
        order_by="WaitlistActivity.created_at.desc()",
    )
    guardian = relationship("Guardian")
    converted_student = relationship("Student")

    __table_args__ = (
        # Queue ordering within a partition
        Index(
            "ix_ewl_partition",
            "organization_id",
            "instrument_name",
            "status",
            "position",
        ),
        Index("ix_ewl_org_status", "organization_id", "status"),
        # Partial index for the offer expiry sweep
        Index(
            "ix_ewl_offer_expires",
            "offer_expires_at",
            postgresql_where=text("status = 'offered'"),
        ),
        CheckConstraint(
            "status IN ('waiting', 'offered', 'accepted', 'declined', 'expired', "
            "'withdrawn', 'lost', 'enrolled')",
            name="ck_ewl_status",
        ),
        CheckConstraint("priority IN ('normal', 'high', 'urgent')", name="ck_ewl_priority"),
        CheckConstraint(
            "source IN ('manual', 'lead_pipeline', 'booking_page', 'parent_portal', 'website')",
            name="ck_ewl_source",
        ),
        # A queue slot is only held while waiting
        CheckConstraint(
            "status = 'waiting' OR position IS NULL", name="ck_ewl_position_only_waiting"
        ),
    )
