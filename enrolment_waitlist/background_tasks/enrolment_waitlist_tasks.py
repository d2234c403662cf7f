# enrolment_waitlist/background_tasks/enrolment_waitlist_tasks.py
"""
Expiry sweep for the enrolment waiting list.

Runs on APScheduler (registered in enrolment_waitlist/scheduler.py) and on
demand through the internal sweep endpoint. Each organisation is swept in
its own transaction so one tenant's failure or backlog never blocks the rest.
Re-running a sweep is a no-op for entries that have already expired.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy.orm import Session

from enrolment_waitlist.crud import crud_enrolment_waitlist, crud_organisation_settings
from enrolment_waitlist.db.session import SessionLocal
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.utils import enrolment_waitlist_notifications
from enrolment_waitlist.utils.time_utils import utcnow
from enrolment_waitlist.utils.waitlist_transitions import WAITING, OFFERED

logger = logging.getLogger(__name__)


def expire_stale_offers(
    db: Session, *, org_id: str, now: datetime
) -> List[EnrolmentWaitlistEntry]:
    """Expire offered entries past their deadline with no response. Does not commit."""
    stale = (
        db.query(EnrolmentWaitlistEntry)
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status == OFFERED,
            EnrolmentWaitlistEntry.offer_expires_at < now,
            EnrolmentWaitlistEntry.responded_at.is_(None),
        )
        .with_for_update(skip_locked=True)
        .all()
    )

    expired = []
    for entry in stale:
        if crud_enrolment_waitlist.expire_entry(
            db,
            entry=entry,
            description="Offer expired without a response",
            metadata={
                "reason": "offer_deadline",
                "offer_expires_at": entry.offer_expires_at.isoformat(),
            },
        ):
            expired.append(entry)
    return expired


def expire_aged_waiting_entries(
    db: Session,
    *,
    org_id: str,
    now: datetime,
    expiry_weeks: Optional[int],
    instrument_names: Optional[List[str]] = None,
) -> List[EnrolmentWaitlistEntry]:
    """
    Expire waiting entries older than `expiry_weeks`, releasing their
    positions. Does not commit. No-op when ageing is switched off.

    `instrument_names` limits the pass to queues whose partition lock the
    caller holds; a queue that appeared mid-sweep waits for the next run.
    """
    if not expiry_weeks:
        return []

    cutoff = now - timedelta(weeks=expiry_weeks)
    query = (
        db.query(EnrolmentWaitlistEntry)
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status == WAITING,
            EnrolmentWaitlistEntry.created_at < cutoff,
        )
    )
    if instrument_names is not None:
        query = query.filter(EnrolmentWaitlistEntry.instrument_name.in_(instrument_names))

    aged = (
        query
        .with_for_update(skip_locked=True)
        # Back of each queue first so earlier releases shift fewer rows
        .order_by(
            EnrolmentWaitlistEntry.instrument_name,
            EnrolmentWaitlistEntry.position.desc(),
        )
        .all()
    )

    expired = []
    for entry in aged:
        if crud_enrolment_waitlist.expire_entry(
            db,
            entry=entry,
            description=f"Expired after waiting more than {expiry_weeks} weeks",
            metadata={"reason": "waiting_age", "expiry_weeks": expiry_weeks},
        ):
            expired.append(entry)
    return expired


def _active_partitions(db: Session, *, org_id: str) -> List[str]:
    rows = (
        db.query(EnrolmentWaitlistEntry.instrument_name)
        .filter(
            EnrolmentWaitlistEntry.organization_id == org_id,
            EnrolmentWaitlistEntry.status.in_([WAITING, OFFERED]),
        )
        .distinct()
        .order_by(EnrolmentWaitlistEntry.instrument_name)
        .all()
    )
    return [row[0] for row in rows]


def sweep_organisation(db: Session, *, org_id: str, now: datetime) -> dict:
    """
    Run both expiry passes for one organisation and commit once.

    Partition locks are taken up front, in instrument order, before any row
    is locked, matching the order used by the request path.
    """
    org_settings = crud_organisation_settings.get_effective(db, org_id=org_id)

    instrument_names = _active_partitions(db, org_id=org_id)
    for instrument_name in instrument_names:
        crud_enrolment_waitlist.lock_partition(
            db, org_id=org_id, instrument_name=instrument_name
        )

    offers = expire_stale_offers(db, org_id=org_id, now=now)
    waiting = expire_aged_waiting_entries(
        db,
        org_id=org_id,
        now=now,
        expiry_weeks=org_settings.waitlist_expiry_weeks,
        instrument_names=instrument_names,
    )

    db.commit()

    for entry in offers + waiting:
        enrolment_waitlist_notifications.emit_waitlist_event("enrolment_waitlist.expired", entry)

    return {"offers_expired": len(offers), "waiting_expired": len(waiting)}


def _organisations_with_active_entries(db: Session) -> List[str]:
    rows = (
        db.query(EnrolmentWaitlistEntry.organization_id)
        .filter(EnrolmentWaitlistEntry.status.in_([WAITING, OFFERED]))
        .distinct()
        .order_by(EnrolmentWaitlistEntry.organization_id)
        .all()
    )
    return [row[0] for row in rows]


def process_waitlist_expiry(now: Optional[datetime] = None) -> dict:
    """
    Sweep every organisation with waiting or offered entries.
    Schedule: Every SWEEP_INTERVAL_MINUTES

    Returns per-run totals and the organisations whose sweep failed.
    """
    logger.info("Running process_waitlist_expiry job")
    now = now or utcnow()
    result = {
        "organizations_processed": 0,
        "offers_expired": 0,
        "waiting_expired": 0,
        "failed_organizations": [],
    }

    db = SessionLocal()
    try:
        org_ids = _organisations_with_active_entries(db)
        db.commit()

        for org_id in org_ids:
            try:
                counts = sweep_organisation(db, org_id=org_id, now=now)
            except Exception as e:
                db.rollback()
                result["failed_organizations"].append(org_id)
                logger.error(f"Waitlist sweep failed for org {org_id}: {e}", exc_info=True)
                continue

            result["organizations_processed"] += 1
            result["offers_expired"] += counts["offers_expired"]
            result["waiting_expired"] += counts["waiting_expired"]

        logger.info(
            f"Waitlist sweep done: {result['offers_expired']} offers and "
            f"{result['waiting_expired']} waiting entries expired across "
            f"{result['organizations_processed']} organisations"
        )
    finally:
        db.close()

    return result
