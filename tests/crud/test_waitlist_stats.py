# tests/crud/test_waitlist_stats.py
from datetime import timedelta

from enrolment_waitlist.crud import crud_enrolment_waitlist, crud_waitlist_stats
from enrolment_waitlist.services.waitlist_conversion import WaitlistConversionService
from tests.utils.waitlist import (
    NOW,
    ORG_ID,
    OTHER_ORG_ID,
    accept_entry,
    create_random_entry,
    offer_entry,
)


def test_stats_counts_active_population(db):
    create_random_entry(db, child_first_name="A")
    create_random_entry(db, child_first_name="B")
    offer_entry(db, create_random_entry(db, child_first_name="C"))
    accept_entry(db, create_random_entry(db, child_first_name="D"))
    withdrawn = create_random_entry(db, child_first_name="E")
    crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=withdrawn.id)
    create_random_entry(db, org_id=OTHER_ORG_ID, child_first_name="F")

    stats = crud_waitlist_stats.get_stats(db, org_id=ORG_ID, now=NOW)

    assert stats == {
        "waiting": 2,
        "offered": 1,
        "accepted": 1,
        "enrolled_this_term": 0,
        "total": 4,
    }


def test_enrolled_this_term_uses_trailing_window(db):
    recent = accept_entry(db, create_random_entry(db, child_first_name="Recent"))
    old = accept_entry(db, create_random_entry(db, child_first_name="Old"))
    service = WaitlistConversionService(db)
    service.convert(org_id=ORG_ID, entry_id=recent.id, now=NOW - timedelta(days=10))
    service.convert(org_id=ORG_ID, entry_id=old.id, now=NOW - timedelta(days=120))

    stats = crud_waitlist_stats.get_stats(db, org_id=ORG_ID, now=NOW)

    assert stats["enrolled_this_term"] == 1
    assert stats["total"] == 0


def test_by_instrument_sorted_by_total(db):
    for name in ("A", "B"):
        create_random_entry(db, child_first_name=name, instrument_name="Violin")
    offer_entry(db, create_random_entry(db, child_first_name="C", instrument_name="Violin"))
    create_random_entry(db, child_first_name="D", instrument_name="Piano")
    create_random_entry(db, child_first_name="E", instrument_name="Cello")
    accept_entry(db, create_random_entry(db, child_first_name="F", instrument_name="Drums"))

    breakdown = crud_waitlist_stats.get_by_instrument(db, org_id=ORG_ID)

    assert breakdown == [
        {"instrument_name": "Violin", "waiting_count": 2, "offered_count": 1, "total": 3},
        {"instrument_name": "Cello", "waiting_count": 1, "offered_count": 0, "total": 1},
        {"instrument_name": "Piano", "waiting_count": 1, "offered_count": 0, "total": 1},
    ]
