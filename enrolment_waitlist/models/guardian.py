# enrolment_waitlist/models/guardian.py
import uuid
from sqlalchemy import Column, String, DateTime, func
from enrolment_waitlist.db.base_class import Base


class Guardian(Base):
    """Billing contact for one or more students. Owned by the contacts module."""
    __tablename__ = "guardians"

    id = Column(String, primary_key=True, default=lambda: f"gdn_{uuid.uuid4().hex[:12]}")
    organization_id = Column(String, nullable=False, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    user_id = Column(String, nullable=True)  # Parent portal login, if any
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
