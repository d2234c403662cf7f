# enrolment_waitlist/api/v1/endpoints/internals.py
from fastapi import APIRouter, Depends

from enrolment_waitlist.api import deps
from enrolment_waitlist.background_tasks.enrolment_waitlist_tasks import process_waitlist_expiry
from enrolment_waitlist.schemas.enrolment_waitlist import SweepResult

router = APIRouter(tags=["Internal"])


@router.post("/internal/enrolment-waitlist/sweep", response_model=SweepResult)
def run_waitlist_sweep(api_key: str = Depends(deps.get_internal_api_key)):
    """
    Run the expiry sweep now, outside the scheduler.
    Used by ops and by cron-driven deployments with the scheduler disabled.
    """
    return process_waitlist_expiry()
