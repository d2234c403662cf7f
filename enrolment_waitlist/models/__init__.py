# Import all models so SQLAlchemy can resolve string relationships
# and Base.metadata knows every table.

from enrolment_waitlist.db.base_class import Base
from enrolment_waitlist.models.guardian import Guardian
from enrolment_waitlist.models.student import Student, StudentGuardian
from enrolment_waitlist.models.organisation_settings import OrganisationWaitlistSettings
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.models.waitlist_activity import WaitlistActivity
