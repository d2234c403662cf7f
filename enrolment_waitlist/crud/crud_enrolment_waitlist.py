# enrolment_waitlist/crud/crud_enrolment_waitlist.py
import hashlib
import logging
from typing import Optional, List
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import func, or_, text
from fastapi import HTTPException, status

from enrolment_waitlist.crud import crud_guardian, crud_organisation_settings
from enrolment_waitlist.crud.crud_waitlist_activity import log_activity
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.schemas.enrolment_waitlist import (
    WaitlistAddRequest,
    WaitlistUpdateRequest,
    OfferSlotRequest,
    OfferResponse,
)
from enrolment_waitlist.utils.time_utils import utcnow
from enrolment_waitlist.utils.waitlist_transitions import (
    WAITING,
    OFFERED,
    ACCEPTED,
    DECLINED,
    EXPIRED,
    WITHDRAWN,
    LOST,
    is_terminal,
    require_status,
    validate_status_transition,
)

logger = logging.getLogger(__name__)

# Fields that may never be cleared by a partial update
NON_NULLABLE_UPDATE_FIELDS = {
    "contact_name",
    "child_first_name",
    "instrument_name",
    "lesson_duration_mins",
    "priority",
}


# ── Position Allocator ────────────────────────────────────────────────


def _partition_lock_key(org_id: str, instrument_name: str) -> int:
    digest = hashlib.sha1(f"{org_id}:{instrument_name}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def lock_partition(db: Session, *, org_id: str, instrument_name: str):
    """
    Serialise position writes for one (organisation, instrument) queue.

    Takes a transaction-scoped advisory lock on PostgreSQL. Other dialects
    (SQLite in tests) already serialise writers, so this is a no-op there.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": _partition_lock_key(org_id, instrument_name)},
    )


def get_next_position(db: Session, *, org_id: str, instrument_name: str) -> int:
    """max(position) + 1 among waiting entries of the partition, starting at 1."""
    current_max = (
        db.query(func.max(EnrolmentWaitlistEntry.position))
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.instrument_name == instrument_name,
            EnrolmentWaitlistEntry.status == WAITING,
        )
        .scalar()
    )
    return (current_max or 0) + 1


def release_position(
    db: Session, *, org_id: str, instrument_name: str, position: int
) -> int:
    """
    Close the gap left by a waiting entry at `position`.
    Every waiting entry behind it moves up by one. Returns rows shifted.
    """
    return (
        db.query(EnrolmentWaitlistEntry)
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.instrument_name == instrument_name,
            EnrolmentWaitlistEntry.status == WAITING,
            EnrolmentWaitlistEntry.position > position,
        )
        .update(
            {EnrolmentWaitlistEntry.position: EnrolmentWaitlistEntry.position - 1},
            synchronize_session="fetch",
        )
    )


def get_waiting_in_partition(
    db: Session, *, org_id: str, instrument_name: str, for_update: bool = False
) -> List[EnrolmentWaitlistEntry]:
    query = db.query(EnrolmentWaitlistEntry).filter(
        EnrolmentWaitlistEntry.organization_id == org_id,
        EnrolmentWaitlistEntry.instrument_name == instrument_name,
        EnrolmentWaitlistEntry.status == WAITING,
    )
    if for_update:
        query = query.with_for_update()
    return query.order_by(EnrolmentWaitlistEntry.position.asc()).all()


def _leave_queue(db: Session, entry: EnrolmentWaitlistEntry, new_status: str) -> str:
    """
    Move `entry` to `new_status`, giving up its queue slot if it held one.

    Compaction only runs when the entry was actually waiting; a stale
    position on an entry that already left the queue is just cleared.
    The caller must already hold the entry's partition lock.
    Returns the previous status.
    """
    previous_status = entry.status
    validate_status_transition(previous_status, new_status)

    released = entry.position if previous_status == WAITING else None
    entry.status = new_status
    entry.position = None
    db.flush()

    if released is not None:
        release_position(
            db,
            org_id=entry.organization_id,
            instrument_name=entry.instrument_name,
            position=released,
        )

    return previous_status


# ── Queue Store ───────────────────────────────────────────────────────


def _escape_like(value: str) -> str:
    """Make LIKE wildcards in user input match literally."""
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def get_entry(db: Session, *, org_id: str, entry_id: str) -> EnrolmentWaitlistEntry:
    """Fetch an entry inside the caller's tenant; 404 otherwise."""
    entry = (
        db.query(EnrolmentWaitlistEntry)
        .filter(
            EnrolmentWaitlistEntry.id == entry_id,
            EnrolmentWaitlistEntry.organization_id == org_id,
        )
        .first()
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    return entry


def get_entry_for_update(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    also_lock_instrument: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    """
    Same as get_entry but holds a row lock until the transaction ends.

    Lock order is always partition advisory lock(s) first, sorted by
    instrument name, then the row. Reorder and the sweeper take their locks
    in the same order. `also_lock_instrument` adds a second partition for
    callers that move the entry between queues.
    """
    instrument_name = get_entry(db, org_id=org_id, entry_id=entry_id).instrument_name
    for name in sorted({instrument_name, also_lock_instrument} - {None}):
        lock_partition(db, org_id=org_id, instrument_name=name)

    entry = (
        db.query(EnrolmentWaitlistEntry)
        .filter(
            EnrolmentWaitlistEntry.id == entry_id,
            EnrolmentWaitlistEntry.organization_id == org_id,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    if entry.instrument_name != instrument_name:
        # Moved to another queue between the read and the lock
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Waitlist entry changed concurrently, please retry",
        )
    return entry


def list_entries(
    db: Session,
    *,
    org_id: str,
    status: Optional[str] = None,
    instrument_name: Optional[str] = None,
    teacher_id: Optional[str] = None,
    location_id: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
) -> List[EnrolmentWaitlistEntry]:
    """
    List entries for an organisation.

    `status="active"` selects waiting and offered entries. Results are
    ordered by instrument, then queue position, then age.
    """
    query = db.query(EnrolmentWaitlistEntry).filter(
        EnrolmentWaitlistEntry.organization_id == org_id
    )

    if status == "active":
        query = query.filter(EnrolmentWaitlistEntry.status.in_([WAITING, OFFERED]))
    elif status:
        query = query.filter(EnrolmentWaitlistEntry.status == status)

    if instrument_name:
        query = query.filter(EnrolmentWaitlistEntry.instrument_name == instrument_name)
    if teacher_id:
        query = query.filter(EnrolmentWaitlistEntry.preferred_teacher_id == teacher_id)
    if location_id:
        query = query.filter(EnrolmentWaitlistEntry.preferred_location_id == location_id)
    if priority:
        query = query.filter(EnrolmentWaitlistEntry.priority == priority)

    if search:
        pattern = f"%{_escape_like(search.strip())}%"
        query = query.filter(
            or_(
                EnrolmentWaitlistEntry.contact_name.ilike(pattern, escape="\\"),
                EnrolmentWaitlistEntry.child_first_name.ilike(pattern, escape="\\"),
                EnrolmentWaitlistEntry.child_last_name.ilike(pattern, escape="\\"),
                EnrolmentWaitlistEntry.instrument_name.ilike(pattern, escape="\\"),
            )
        )

    return query.order_by(
        EnrolmentWaitlistEntry.instrument_name.asc(),
        EnrolmentWaitlistEntry.position.asc().nulls_last(),
        EnrolmentWaitlistEntry.created_at.asc(),
    ).all()


def create_entry(
    db: Session,
    *,
    org_id: str,
    entry_in: WaitlistAddRequest,
    user_id: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    """
    Add a family to the back of its instrument queue.

    Steps:
    1. Check the referenced guardian belongs to the organisation
    2. Lock the (organisation, instrument) partition
    3. Take position max + 1 and insert with status="waiting"
    4. Log the `created` activity
    5. Emit Kafka event / lead note (handled by caller)
    """
    if entry_in.guardian_id and not crud_guardian.get_guardian(
        db, org_id=org_id, guardian_id=entry_in.guardian_id
    ):
        raise HTTPException(status_code=404, detail="Guardian not found")

    lock_partition(db, org_id=org_id, instrument_name=entry_in.instrument_name)
    position = get_next_position(
        db, org_id=org_id, instrument_name=entry_in.instrument_name
    )

    data = entry_in.model_dump()
    data["priority"] = entry_in.priority.value
    data["source"] = entry_in.source.value
    if entry_in.preferred_days is not None:
        data["preferred_days"] = [d.value for d in entry_in.preferred_days]

    entry = EnrolmentWaitlistEntry(
        organization_id=org_id,
        position=position,
        status=WAITING,
        created_by=user_id,
        **data,
    )
    db.add(entry)
    db.flush()

    log_activity(
        db,
        entry=entry,
        activity_type="created",
        description=f"Added to {entry.instrument_name} waiting list at position {position}",
        metadata={"source": entry.source, "position": position},
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)

    logger.info(
        f"Waitlist entry {entry.id} created for org {org_id} "
        f"({entry.instrument_name} #{position})"
    )
    return entry


def update_entry(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    update_in: WaitlistUpdateRequest,
    user_id: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    """
    Partial update of contact, child, preference, notes and priority fields.

    Every material edit logs exactly one activity: `priority_changed` (with
    old and new values) when the priority moved, otherwise `updated`. Both
    name the other changed fields. Moving a waiting entry to another
    instrument puts it at the back of that queue.
    """
    entry = get_entry_for_update(
        db,
        org_id=org_id,
        entry_id=entry_id,
        also_lock_instrument=update_in.instrument_name,
    )

    if is_terminal(entry.status):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Cannot update entry in terminal status '{entry.status}'",
        )

    data = update_in.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_UPDATE_FIELDS:
        if field in data and data[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be null")

    if data.get("priority") is not None:
        data["priority"] = update_in.priority.value
    if data.get("preferred_days") is not None:
        data["preferred_days"] = [d.value for d in update_in.preferred_days]

    earliest = data.get("preferred_time_earliest", entry.preferred_time_earliest)
    latest = data.get("preferred_time_latest", entry.preferred_time_latest)
    if earliest and latest and earliest > latest:
        raise HTTPException(
            status_code=400,
            detail="preferred_time_earliest must not be after preferred_time_latest",
        )

    changes = {k: v for k, v in data.items() if getattr(entry, k) != v}
    if not changes:
        return entry

    old_priority = entry.priority
    new_priority = changes.pop("priority", None)

    old_instrument = entry.instrument_name
    new_instrument = changes.get("instrument_name")
    move_partition = new_instrument is not None and entry.status == WAITING

    position_metadata = {}
    if move_partition:
        released = entry.position
        entry.position = None
        db.flush()
        if released is not None:
            release_position(
                db, org_id=org_id, instrument_name=old_instrument, position=released
            )
        new_position = get_next_position(db, org_id=org_id, instrument_name=new_instrument)
        position_metadata = {"old_position": released, "new_position": new_position}

    for field, value in changes.items():
        setattr(entry, field, value)
    if move_partition:
        entry.position = position_metadata["new_position"]

    # One activity row per edit; a priority change names the row
    metadata = {}
    if changes:
        metadata["fields"] = sorted(changes.keys())
    if new_instrument is not None:
        metadata.update(
            {"old_instrument": old_instrument, "new_instrument": new_instrument},
            **position_metadata,
        )

    if new_priority is not None:
        entry.priority = new_priority
        metadata.update({"old_priority": old_priority, "new_priority": new_priority})
        activity_type = "priority_changed"
        description = f"Priority changed from {old_priority} to {new_priority}"
        if changes:
            description = f"{description}; updated {', '.join(metadata['fields'])}"
    else:
        activity_type = "updated"
        description = f"Updated {', '.join(metadata['fields'])}"

    log_activity(
        db,
        entry=entry,
        activity_type=activity_type,
        description=description,
        metadata=metadata,
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)
    return entry


# ── Reordering ────────────────────────────────────────────────────────


def _apply_order(
    db: Session,
    *,
    entries: List[EnrolmentWaitlistEntry],
    ordered_ids: List[str],
    user_id: Optional[str],
) -> List[EnrolmentWaitlistEntry]:
    by_id = {e.id: e for e in entries}
    moved = []

    for index, entry_id in enumerate(ordered_ids, start=1):
        entry = by_id[entry_id]
        if entry.position == index:
            continue
        old_position = entry.position
        entry.position = index
        moved.append(entry)
        log_activity(
            db,
            entry=entry,
            activity_type="position_changed",
            description=f"Position changed from {old_position} to {index}",
            metadata={"old_position": old_position, "new_position": index},
            user_id=user_id,
        )

    db.commit()
    return moved


def reorder_partition(
    db: Session,
    *,
    org_id: str,
    instrument_name: str,
    entry_ids: List[str],
    user_id: Optional[str] = None,
) -> List[EnrolmentWaitlistEntry]:
    """
    Rewrite a queue's order from the complete list of its waiting entry ids.
    Returns the entries whose position changed.
    """
    lock_partition(db, org_id=org_id, instrument_name=instrument_name)
    entries = get_waiting_in_partition(
        db, org_id=org_id, instrument_name=instrument_name, for_update=True
    )

    if {e.id for e in entries} != set(entry_ids) or len(entry_ids) != len(entries):
        raise HTTPException(
            status_code=400,
            detail="entry_ids must list every waiting entry in the partition exactly once",
        )

    moved = _apply_order(db, entries=entries, ordered_ids=entry_ids, user_id=user_id)
    logger.info(
        f"Reordered {instrument_name} queue for org {org_id}: {len(moved)} entries moved"
    )
    return moved


def move_entry(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    new_position: int,
    user_id: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    """Move one waiting entry to `new_position`; the rest of the queue shifts around it."""
    entry = get_entry_for_update(db, org_id=org_id, entry_id=entry_id)
    require_status(entry, WAITING, "move entry")

    entries = get_waiting_in_partition(
        db, org_id=org_id, instrument_name=entry.instrument_name, for_update=True
    )

    if new_position > len(entries):
        raise HTTPException(
            status_code=400,
            detail=f"position must be between 1 and {len(entries)}",
        )

    ordered_ids = [e.id for e in entries if e.id != entry.id]
    ordered_ids.insert(new_position - 1, entry.id)

    _apply_order(db, entries=entries, ordered_ids=ordered_ids, user_id=user_id)
    db.refresh(entry)
    return entry


# ── Offer Manager ─────────────────────────────────────────────────────


def offer_slot(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    offer_in: OfferSlotRequest,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EnrolmentWaitlistEntry:
    """
    Offer a concrete lesson slot to a waiting entry.

    The entry leaves the waiting queue and the offer deadline is taken from
    the organisation's offer_expiry_hours. Email is sent by the caller.
    """
    now = now or utcnow()
    entry = get_entry_for_update(db, org_id=org_id, entry_id=entry_id)
    require_status(entry, WAITING, "offer slot")

    org_settings = crud_organisation_settings.get_effective(db, org_id=org_id)
    expires_at = now + timedelta(hours=org_settings.offer_expiry_hours)

    _leave_queue(db, entry, OFFERED)

    entry.offered_slot_day = offer_in.day.value
    entry.offered_slot_time = offer_in.time
    entry.offered_teacher_id = offer_in.teacher_id
    entry.offered_location_id = offer_in.location_id
    entry.offered_rate_minor = offer_in.rate_minor
    entry.offered_at = now
    entry.offer_expires_at = expires_at
    entry.responded_at = None

    log_activity(
        db,
        entry=entry,
        activity_type="offered",
        description=(
            f"Slot offered: {offer_in.day.value.capitalize()} at "
            f"{offer_in.time.strftime('%H:%M')}"
        ),
        metadata={
            "day": offer_in.day.value,
            "time": offer_in.time.strftime("%H:%M"),
            "teacher_id": offer_in.teacher_id,
            "location_id": offer_in.location_id,
            "rate_minor": offer_in.rate_minor,
            "expires_at": expires_at.isoformat(),
        },
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)

    logger.info(f"Slot offered to waitlist entry {entry.id}, expires {expires_at}")
    return entry


def respond_to_offer(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    action: OfferResponse,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EnrolmentWaitlistEntry:
    """Record the family's accept/decline on an open offer."""
    now = now or utcnow()
    entry = get_entry_for_update(db, org_id=org_id, entry_id=entry_id)
    require_status(entry, OFFERED, "respond to offer")

    new_status = ACCEPTED if action == OfferResponse.ACCEPT else DECLINED
    validate_status_transition(entry.status, new_status)

    entry.status = new_status
    entry.responded_at = now

    log_activity(
        db,
        entry=entry,
        activity_type=new_status,
        description=f"Offer {new_status} by family",
        metadata={"responded_at": now.isoformat()},
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)

    logger.info(f"Waitlist entry {entry.id} offer {new_status}")
    return entry


def withdraw_entry(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    user_id: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    entry = get_entry_for_update(db, org_id=org_id, entry_id=entry_id)
    previous_status = _leave_queue(db, entry, WITHDRAWN)

    log_activity(
        db,
        entry=entry,
        activity_type="withdrawn",
        description="Withdrawn from waiting list",
        metadata={"previous_status": previous_status},
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)

    logger.info(f"Waitlist entry {entry.id} withdrawn (was {previous_status})")
    return entry


def mark_lost(
    db: Session,
    *,
    org_id: str,
    entry_id: str,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> EnrolmentWaitlistEntry:
    """Administrative override for a family that stopped responding."""
    entry = get_entry_for_update(db, org_id=org_id, entry_id=entry_id)
    previous_status = _leave_queue(db, entry, LOST)

    description = "Marked as lost"
    if reason:
        description = f"{description}: {reason}"

    log_activity(
        db,
        entry=entry,
        activity_type="lost",
        description=description,
        metadata={"previous_status": previous_status, "reason": reason},
        user_id=user_id,
    )

    db.commit()
    db.refresh(entry)

    logger.info(f"Waitlist entry {entry.id} marked lost (was {previous_status})")
    return entry


def expire_entry(
    db: Session,
    *,
    entry: EnrolmentWaitlistEntry,
    description: str,
    metadata: Optional[dict] = None,
) -> bool:
    """
    Drive a waiting or offered entry to `expired`. Does not commit; the
    caller holds the partition lock (see sweep_organisation).
    Returns False without touching the entry if it already moved on.
    """
    if entry.status not in (WAITING, OFFERED):
        return False

    previous_status = _leave_queue(db, entry, EXPIRED)

    log_activity(
        db,
        entry=entry,
        activity_type="expired",
        description=description,
        metadata={"previous_status": previous_status, **(metadata or {})},
    )
    return True
