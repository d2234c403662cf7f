# enrolment_waitlist/crud/crud_student.py
from typing import Optional
from sqlalchemy.orm import Session

from enrolment_waitlist.models.student import Student, StudentGuardian


def create_student(
    db: Session,
    *,
    org_id: str,
    first_name: str,
    last_name: Optional[str] = None,
    default_teacher_id: Optional[str] = None,
) -> Student:
    """Create an active student. Flushes, never commits."""
    student = Student(
        organization_id=org_id,
        first_name=first_name,
        last_name=last_name,
        default_teacher_id=default_teacher_id,
        status="active",
    )
    db.add(student)
    db.flush()
    return student


def link_guardian(
    db: Session,
    *,
    student: Student,
    guardian_id: str,
    relationship_type: str = "parent",
    is_primary_payer: bool = True,
) -> StudentGuardian:
    link = StudentGuardian(
        organization_id=student.organization_id,
        student_id=student.id,
        guardian_id=guardian_id,
        relationship_type=relationship_type,
        is_primary_payer=is_primary_payer,
    )
    db.add(link)
    db.flush()
    return link
