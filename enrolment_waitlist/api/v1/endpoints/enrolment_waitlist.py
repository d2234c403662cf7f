# enrolment_waitlist/api/v1/endpoints/enrolment_waitlist.py
"""Admin endpoints for the enrolment waiting list."""
import logging
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from enrolment_waitlist.api import deps
from enrolment_waitlist.db.session import get_db
from enrolment_waitlist.crud import (
    crud_enrolment_waitlist,
    crud_organisation_settings,
    crud_waitlist_activity,
    crud_waitlist_stats,
)
from enrolment_waitlist.schemas.enrolment_waitlist import (
    WaitlistAddRequest,
    WaitlistUpdateRequest,
    OfferSlotRequest,
    OfferRespondRequest,
    ConvertRequest,
    MarkLostRequest,
    MoveRequest,
    ReorderRequest,
    WaitlistSettingsUpdate,
    WaitlistEntryResponse,
    WaitlistEntryDetailResponse,
    WaitlistEntryListResponse,
    WaitlistActivityResponse,
    WaitlistConversionResponse,
    WaitlistStatsResponse,
    WaitlistSettingsResponse,
    InstrumentBreakdown,
)
from enrolment_waitlist.schemas.token import TokenPayload
from enrolment_waitlist.services.waitlist_conversion import WaitlistConversionService
from enrolment_waitlist.utils import enrolment_waitlist_notifications as notifications

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/organizations/{orgId}/enrolment-waitlist", tags=["Enrolment Waitlist"]
)


# ── Helpers ───────────────────────────────────────────────────────────


def _check_org_auth(current_user: TokenPayload, orgId: str):
    if current_user.org_id != orgId:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized"
        )


def _build_entry_response(entry) -> WaitlistEntryResponse:
    return WaitlistEntryResponse.model_validate(entry)


def _build_settings_response(row) -> WaitlistSettingsResponse:
    return WaitlistSettingsResponse(
        organization_id=row.organization_id,
        offer_expiry_hours=row.offer_expiry_hours,
        waitlist_expiry_weeks=row.waitlist_expiry_weeks,
    )


# ── Collection ────────────────────────────────────────────────────────


@router.post("", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
def add_to_waitlist(
    orgId: str,
    request: WaitlistAddRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Add a family to the back of the queue for an instrument."""
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.create_entry(
        db, org_id=orgId, entry_in=request, user_id=current_user.sub
    )

    notifications.emit_waitlist_event("enrolment_waitlist.created", entry)
    notifications.emit_lead_activity(
        entry,
        "waitlist_added",
        f"Added to {entry.instrument_name} waiting list at position {entry.position}",
        user_id=current_user.sub,
    )

    return _build_entry_response(entry)


@router.get("", response_model=WaitlistEntryListResponse)
def list_waitlist_entries(
    orgId: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    instrument_name: Optional[str] = Query(None),
    teacher_id: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """List entries. `status=active` selects waiting and offered."""
    _check_org_auth(current_user, orgId)

    entries = crud_enrolment_waitlist.list_entries(
        db,
        org_id=orgId,
        status=status_filter,
        instrument_name=instrument_name,
        teacher_id=teacher_id,
        location_id=location_id,
        priority=priority,
        search=search,
    )

    return {
        "waitlist_entries": [_build_entry_response(e) for e in entries],
        "count": len(entries),
    }


@router.get("/stats", response_model=WaitlistStatsResponse)
def get_waitlist_stats(
    orgId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)
    return crud_waitlist_stats.get_stats(db, org_id=orgId)


@router.get("/stats/by-instrument", response_model=List[InstrumentBreakdown])
def get_waitlist_by_instrument(
    orgId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)
    return crud_waitlist_stats.get_by_instrument(db, org_id=orgId)


@router.get("/settings", response_model=WaitlistSettingsResponse)
def get_waitlist_settings(
    orgId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)
    return _build_settings_response(
        crud_organisation_settings.get_effective(db, org_id=orgId)
    )


@router.put("/settings", response_model=WaitlistSettingsResponse)
def update_waitlist_settings(
    orgId: str,
    request: WaitlistSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)
    row = crud_organisation_settings.update(db, org_id=orgId, settings_in=request)
    logger.info(
        f"Waitlist settings for org {orgId} updated by {current_user.sub}: "
        f"offer_expiry_hours={row.offer_expiry_hours}, "
        f"waitlist_expiry_weeks={row.waitlist_expiry_weeks}"
    )
    return _build_settings_response(row)


@router.put("/reorder", response_model=WaitlistEntryListResponse)
def reorder_waitlist(
    orgId: str,
    request: ReorderRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Replace an instrument queue's order.
    `entry_ids` must name every waiting entry of that instrument exactly once.
    """
    _check_org_auth(current_user, orgId)

    moved = crud_enrolment_waitlist.reorder_partition(
        db,
        org_id=orgId,
        instrument_name=request.instrument_name,
        entry_ids=request.entry_ids,
        user_id=current_user.sub,
    )
    for entry in moved:
        notifications.emit_waitlist_event("enrolment_waitlist.position_changed", entry)

    entries = crud_enrolment_waitlist.get_waiting_in_partition(
        db, org_id=orgId, instrument_name=request.instrument_name
    )
    return {
        "waitlist_entries": [_build_entry_response(e) for e in entries],
        "count": len(entries),
    }


# ── Single entry ──────────────────────────────────────────────────────


@router.get("/{waitlistId}", response_model=WaitlistEntryDetailResponse)
def get_waitlist_entry(
    orgId: str,
    waitlistId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Entry detail with its activity log, newest first."""
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.get_entry(db, org_id=orgId, entry_id=waitlistId)
    activities = crud_waitlist_activity.get_for_entry(
        db, org_id=orgId, waitlist_id=entry.id
    )

    return {
        "entry": _build_entry_response(entry),
        "activities": [WaitlistActivityResponse.model_validate(a) for a in activities],
    }


@router.patch("/{waitlistId}", response_model=WaitlistEntryResponse)
def update_waitlist_entry(
    orgId: str,
    waitlistId: str,
    request: WaitlistUpdateRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.update_entry(
        db, org_id=orgId, entry_id=waitlistId, update_in=request, user_id=current_user.sub
    )
    notifications.emit_waitlist_event("enrolment_waitlist.updated", entry)
    return _build_entry_response(entry)


@router.post("/{waitlistId}/offer", response_model=WaitlistEntryResponse)
def offer_slot(
    orgId: str,
    waitlistId: str,
    request: OfferSlotRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Offer a lesson slot to a waiting entry.
    The offer email goes out after commit; a failed send does not undo the offer.
    """
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.offer_slot(
        db, org_id=orgId, entry_id=waitlistId, offer_in=request, user_id=current_user.sub
    )

    try:
        notifications.notify_offer_sent(entry)
    except Exception as e:
        logger.error(f"Failed to send offer notification for {entry.id}: {e}", exc_info=True)

    notifications.emit_waitlist_event(
        "enrolment_waitlist.offered",
        entry,
        metadata={"offer_expires_at": entry.offer_expires_at},
    )
    return _build_entry_response(entry)


@router.post("/{waitlistId}/respond", response_model=WaitlistEntryResponse)
def respond_to_offer(
    orgId: str,
    waitlistId: str,
    request: OfferRespondRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Record a family's answer taken by staff (phone, in person)."""
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.respond_to_offer(
        db, org_id=orgId, entry_id=waitlistId, action=request.action, user_id=current_user.sub
    )
    notifications.notify_offer_responded(entry)
    notifications.emit_waitlist_event(f"enrolment_waitlist.{entry.status}", entry)
    return _build_entry_response(entry)


@router.post("/{waitlistId}/convert", response_model=WaitlistConversionResponse)
def convert_to_student(
    orgId: str,
    waitlistId: str,
    request: Optional[ConvertRequest] = None,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Enrol an accepted entry as a student with a primary-payer guardian."""
    _check_org_auth(current_user, orgId)

    result = WaitlistConversionService(db).convert(
        org_id=orgId,
        entry_id=waitlistId,
        teacher_id=request.teacher_id if request else None,
        user_id=current_user.sub,
    )

    entry = crud_enrolment_waitlist.get_entry(db, org_id=orgId, entry_id=waitlistId)
    notifications.emit_waitlist_event(
        "enrolment_waitlist.enrolled",
        entry,
        metadata={"student_id": result["student_id"], "guardian_id": result["guardian_id"]},
    )
    notifications.emit_lead_activity(
        entry,
        "waitlist_enrolled",
        f"Enrolled from waiting list as student {result['student_id']}",
        user_id=current_user.sub,
    )
    return result


@router.post("/{waitlistId}/withdraw", response_model=WaitlistEntryResponse)
def withdraw_from_waitlist(
    orgId: str,
    waitlistId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.withdraw_entry(
        db, org_id=orgId, entry_id=waitlistId, user_id=current_user.sub
    )
    notifications.emit_waitlist_event("enrolment_waitlist.withdrawn", entry)
    return _build_entry_response(entry)


@router.post("/{waitlistId}/mark-lost", response_model=WaitlistEntryResponse)
def mark_waitlist_entry_lost(
    orgId: str,
    waitlistId: str,
    request: Optional[MarkLostRequest] = None,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.mark_lost(
        db,
        org_id=orgId,
        entry_id=waitlistId,
        reason=request.reason if request else None,
        user_id=current_user.sub,
    )
    notifications.emit_waitlist_event("enrolment_waitlist.lost", entry)
    return _build_entry_response(entry)


@router.post("/{waitlistId}/move", response_model=WaitlistEntryResponse)
def move_waitlist_entry(
    orgId: str,
    waitlistId: str,
    request: MoveRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Move a waiting entry to another position in its instrument queue."""
    _check_org_auth(current_user, orgId)

    entry = crud_enrolment_waitlist.move_entry(
        db,
        org_id=orgId,
        entry_id=waitlistId,
        new_position=request.position,
        user_id=current_user.sub,
    )
    notifications.emit_waitlist_event("enrolment_waitlist.position_changed", entry)
    return _build_entry_response(entry)
