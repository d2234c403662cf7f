# enrolment_waitlist/models/organisation_settings.py
from sqlalchemy import CheckConstraint, Column, String, Integer, DateTime, func, text
from enrolment_waitlist.db.base_class import Base


class OrganisationWaitlistSettings(Base):
    """Per-organisation knobs for offer deadlines and waiting-list ageing."""
    __tablename__ = "organisation_waitlist_settings"

    organization_id = Column(String, primary_key=True)
    offer_expiry_hours = Column(Integer, nullable=False, server_default=text("48"))
    # NULL means waiting entries never age out
    waitlist_expiry_weeks = Column(Integer, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "offer_expiry_hours BETWEEN 1 AND 720", name="ck_ows_offer_expiry_hours"
        ),
        CheckConstraint(
            "waitlist_expiry_weeks IS NULL OR waitlist_expiry_weeks BETWEEN 1 AND 520",
            name="ck_ows_waitlist_expiry_weeks",
        ),
    )
