# enrolment_waitlist/services/waitlist_conversion.py
import logging
from typing import Optional
from datetime import datetime
from fastapi import HTTPException
from sqlalchemy.orm import Session

from enrolment_waitlist.crud import crud_enrolment_waitlist, crud_guardian, crud_student
from enrolment_waitlist.crud.crud_waitlist_activity import log_activity
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.models.guardian import Guardian
from enrolment_waitlist.utils.time_utils import utcnow
from enrolment_waitlist.utils.waitlist_transitions import (
    ACCEPTED,
    ENROLLED,
    require_status,
    validate_status_transition,
)

logger = logging.getLogger(__name__)


class WaitlistConversionService:
    """
    Turns an accepted waitlist entry into an enrolled student.

    Guardian resolution, student creation, the student/guardian link and the
    entry stamp share one transaction: either all of them commit or the
    session is rolled back and the entry stays `accepted`.
    """

    def __init__(self, db: Session):
        self.db = db

    def _resolve_guardian(self, entry: EnrolmentWaitlistEntry) -> tuple[Guardian, bool]:
        """
        Guardian for the new student. Returns (guardian, created).

        Order: the entry's own guardian, then a guardian of the same
        organisation with the same email, then a new record.
        """
        if entry.guardian_id:
            guardian = crud_guardian.get_guardian(
                self.db, org_id=entry.organization_id, guardian_id=entry.guardian_id
            )
            if guardian:
                return guardian, False
            logger.warning(
                f"Guardian {entry.guardian_id} on waitlist entry {entry.id} not found; "
                f"resolving from contact details"
            )

        return crud_guardian.get_or_create_by_contact(
            self.db,
            org_id=entry.organization_id,
            full_name=entry.contact_name,
            email=entry.contact_email,
            phone=entry.contact_phone,
        )

    def convert(
        self,
        *,
        org_id: str,
        entry_id: str,
        teacher_id: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Convert an accepted entry.

        Steps:
        1. Lock the entry and check it is `accepted`
        2. Resolve or create the guardian
        3. Create the student (teacher: override, offered, preferred)
        4. Link student to guardian as primary payer
        5. Stamp the entry `enrolled` and log the `enrolled` activity
        6. Commit once; roll everything back on any failure
        7. Emit Kafka event / lead note (handled by caller)

        Returns:
            dict with waitlist_id, student_id, guardian_id, guardian_created
        """
        now = now or utcnow()
        db = self.db

        entry = crud_enrolment_waitlist.get_entry_for_update(
            db, org_id=org_id, entry_id=entry_id
        )
        require_status(entry, ACCEPTED, "convert")
        validate_status_transition(entry.status, ENROLLED)

        try:
            guardian, guardian_created = self._resolve_guardian(entry)

            student = crud_student.create_student(
                db,
                org_id=org_id,
                first_name=entry.child_first_name,
                last_name=entry.child_last_name,
                default_teacher_id=(
                    teacher_id or entry.offered_teacher_id or entry.preferred_teacher_id
                ),
            )

            crud_student.link_guardian(
                db,
                student=student,
                guardian_id=guardian.id,
                relationship_type="parent",
                is_primary_payer=True,
            )

            entry.status = ENROLLED
            entry.position = None
            entry.converted_student_id = student.id
            entry.converted_at = now
            entry.guardian_id = guardian.id

            child_name = " ".join(
                part for part in (entry.child_first_name, entry.child_last_name) if part
            )
            log_activity(
                db,
                entry=entry,
                activity_type="enrolled",
                description=f"Converted to student: {child_name}",
                metadata={"student_id": student.id, "guardian_id": guardian.id},
                user_id=user_id,
            )

            db.commit()
        except HTTPException:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(
                f"Conversion of waitlist entry {entry_id} failed, rolled back: {e}",
                exc_info=True,
            )
            raise HTTPException(
                status_code=500,
                detail="Conversion failed; entry left in 'accepted'",
            )

        db.refresh(entry)
        logger.info(
            f"Waitlist entry {entry.id} converted to student {student.id} "
            f"(guardian {guardian.id}, created={guardian_created})"
        )

        return {
            "waitlist_id": entry.id,
            "student_id": student.id,
            "guardian_id": guardian.id,
            "guardian_created": guardian_created,
        }
