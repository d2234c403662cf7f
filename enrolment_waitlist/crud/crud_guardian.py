# enrolment_waitlist/crud/crud_guardian.py
from typing import Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session

from enrolment_waitlist.models.guardian import Guardian


def get_guardian(db: Session, *, org_id: str, guardian_id: str) -> Optional[Guardian]:
    return (
        db.query(Guardian)
        .filter(Guardian.id == guardian_id, Guardian.organization_id == org_id)
        .first()
    )


def find_by_email(db: Session, *, org_id: str, email: str) -> Optional[Guardian]:
    """Case-insensitive email match within one organisation."""
    return (
        db.query(Guardian)
        .filter(
            Guardian.organization_id == org_id,
            func.lower(Guardian.email) == email.strip().lower(),
        )
        .order_by(Guardian.created_at.asc())
        .first()
    )


def create_guardian(
    db: Session,
    *,
    org_id: str,
    full_name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> Guardian:
    guardian = Guardian(
        organization_id=org_id,
        full_name=full_name,
        email=email,
        phone=phone,
    )
    db.add(guardian)
    db.flush()
    return guardian


def get_or_create_by_contact(
    db: Session,
    *,
    org_id: str,
    full_name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> Tuple[Guardian, bool]:
    """
    Reuse the organisation's guardian with the same email, if any.
    Returns (guardian, created).
    """
    if email:
        existing = find_by_email(db, org_id=org_id, email=email)
        if existing:
            return existing, False

    return create_guardian(
        db, org_id=org_id, full_name=full_name, email=email, phone=phone
    ), True
