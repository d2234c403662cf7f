# enrolment_waitlist/api/v1/endpoints/waitlist_respond.py
"""Public accept/decline links from offer emails. No login; the token is the credential."""
import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from enrolment_waitlist.db.session import get_db
from enrolment_waitlist.crud import crud_enrolment_waitlist
from enrolment_waitlist.schemas.enrolment_waitlist import OfferResponse, OfferRespondResult
from enrolment_waitlist.utils import enrolment_waitlist_notifications as notifications
from enrolment_waitlist.utils.offer_tokens import verify_offer_token
from enrolment_waitlist.utils.waitlist_transitions import OFFERED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrolment-waitlist", tags=["Enrolment Waitlist (Public)"])


def _already_responded(entry) -> dict:
    return {
        "waitlist_id": entry.id,
        "status": entry.status,
        "already_responded": True,
        "message": f"This offer is no longer open (status: {entry.status})",
    }


@router.get("/respond", response_model=OfferRespondResult)
def respond_via_link(
    token: str = Query(..., min_length=1),
    action: OfferResponse = Query(...),
    db: Session = Depends(get_db),
):
    """
    Apply the family's answer from an emailed link.

    An entry that is no longer `offered` is reported as already responded
    rather than as an error, so a second click shows a friendly page.
    """
    payload = verify_offer_token(token, action.value)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired link",
        )

    org_id = payload["org_id"]
    entry = crud_enrolment_waitlist.get_entry(
        db, org_id=org_id, entry_id=payload["waitlist_id"]
    )

    if entry.status != OFFERED:
        return _already_responded(entry)

    try:
        entry = crud_enrolment_waitlist.respond_to_offer(
            db, org_id=org_id, entry_id=entry.id, action=action
        )
    except HTTPException as e:
        if e.status_code != status.HTTP_422_UNPROCESSABLE_ENTITY:
            raise
        # Lost a race with staff or the sweeper
        db.rollback()
        entry = crud_enrolment_waitlist.get_entry(db, org_id=org_id, entry_id=entry.id)
        return _already_responded(entry)

    logger.info(f"Waitlist entry {entry.id} {entry.status} via emailed link")
    notifications.notify_offer_responded(entry)
    notifications.emit_waitlist_event(f"enrolment_waitlist.{entry.status}", entry)

    return {
        "waitlist_id": entry.id,
        "status": entry.status,
        "already_responded": False,
        "message": f"Thank you, the offer has been {entry.status}",
    }
