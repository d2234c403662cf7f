# enrolment_waitlist/models/student.py
import uuid
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint, func, text
)
from sqlalchemy.orm import relationship
from enrolment_waitlist.db.base_class import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(String, primary_key=True, default=lambda: f"stu_{uuid.uuid4().hex[:12]}")
    organization_id = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=True)
    default_teacher_id = Column(String, nullable=True)
    status = Column(String, nullable=False, server_default=text("'active'"))  # active, inactive
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    guardian_links = relationship("StudentGuardian", back_populates="student")


class StudentGuardian(Base):
    """Links a student to a guardian; one link per pair."""
    __tablename__ = "student_guardians"

    id = Column(String, primary_key=True, default=lambda: f"sgl_{uuid.uuid4().hex[:12]}")
    organization_id = Column(String, nullable=False, index=True)
    student_id = Column(
        String, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    guardian_id = Column(
        String, ForeignKey("guardians.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relationship_type = Column("relationship", String, nullable=False, server_default=text("'parent'"))
    is_primary_payer = Column(Boolean, nullable=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    student = relationship("Student", back_populates="guardian_links")
    guardian = relationship("Guardian")

    __table_args__ = (
        UniqueConstraint("student_id", "guardian_id", name="unique_student_guardian"),
    )
