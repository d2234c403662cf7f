# enrolment_waitlist/crud/crud_organisation_settings.py
from sqlalchemy.orm import Session

from enrolment_waitlist.core.config import settings
from enrolment_waitlist.models.organisation_settings import OrganisationWaitlistSettings
from enrolment_waitlist.schemas.enrolment_waitlist import WaitlistSettingsUpdate


def get_effective(db: Session, *, org_id: str) -> OrganisationWaitlistSettings:
    """
    The organisation's waitlist settings, falling back to service defaults.
    The fallback object is transient and never added to the session.
    """
    row = db.get(OrganisationWaitlistSettings, org_id)
    if row:
        return row

    return OrganisationWaitlistSettings(
        organization_id=org_id,
        offer_expiry_hours=settings.DEFAULT_OFFER_EXPIRY_HOURS,
        waitlist_expiry_weeks=settings.DEFAULT_WAITLIST_EXPIRY_WEEKS,
    )


def update(
    db: Session, *, org_id: str, settings_in: WaitlistSettingsUpdate
) -> OrganisationWaitlistSettings:
    row = db.get(OrganisationWaitlistSettings, org_id)
    if not row:
        row = OrganisationWaitlistSettings(organization_id=org_id)
        db.add(row)

    row.offer_expiry_hours = settings_in.offer_expiry_hours
    row.waitlist_expiry_weeks = settings_in.waitlist_expiry_weeks

    db.commit()
    db.refresh(row)
    return row
