# tests/crud/test_enrolment_waitlist.py
"""
Queue store, position allocator and offer manager against a real
(in-memory SQLite) database.
"""

import pytest
from datetime import timedelta
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from enrolment_waitlist.crud import crud_enrolment_waitlist, crud_organisation_settings
from enrolment_waitlist.models.waitlist_activity import WaitlistActivity
from enrolment_waitlist.schemas.enrolment_waitlist import (
    OfferResponse,
    WaitlistSettingsUpdate,
    WaitlistUpdateRequest,
)
from enrolment_waitlist.utils.time_utils import as_utc
from tests.utils.waitlist import (
    NOW,
    ORG_ID,
    OTHER_ORG_ID,
    accept_entry,
    assert_partition_locks_first,
    create_random_entry,
    offer_entry,
    offer_request,
    record_lock_order,
    waiting_positions,
)


def _activities(db, entry, activity_type=None):
    query = db.query(WaitlistActivity).filter(WaitlistActivity.waitlist_id == entry.id)
    if activity_type:
        query = query.filter(WaitlistActivity.activity_type == activity_type)
    return query.all()


class TestEnqueue:
    def test_positions_follow_insertion_order(self, db):
        olivia = create_random_entry(db, child_first_name="Olivia")
        jack = create_random_entry(db, child_first_name="Jack")

        assert olivia.position == 1
        assert jack.position == 2
        assert olivia.status == "waiting"
        assert olivia.lesson_duration_mins == 30

    def test_partitions_are_independent(self, db):
        create_random_entry(db, child_first_name="Olivia", instrument_name="Piano")
        violin = create_random_entry(db, child_first_name="Mia", instrument_name="Violin")
        other_org = create_random_entry(db, org_id=OTHER_ORG_ID, child_first_name="Leo")

        assert violin.position == 1
        assert other_org.position == 1

    def test_created_activity_records_source_and_position(self, db):
        entry = create_random_entry(db, source="booking_page")

        [activity] = _activities(db, entry)
        assert activity.activity_type == "created"
        assert activity.activity_metadata == {"source": "booking_page", "position": 1}
        assert activity.created_by == "user_123"

    def test_unknown_guardian_is_rejected(self, db):
        with pytest.raises(HTTPException) as exc_info:
            create_random_entry(db, guardian_id="gdn_missing")
        assert exc_info.value.status_code == 404


class TestTenantIsolation:
    def test_other_tenant_entry_is_not_found(self, db):
        entry = create_random_entry(db)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.get_entry(db, org_id=OTHER_ORG_ID, entry_id=entry.id)
        assert exc_info.value.status_code == 404

    def test_other_tenant_cannot_offer(self, db):
        entry = create_random_entry(db)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.offer_slot(
                db, org_id=OTHER_ORG_ID, entry_id=entry.id, offer_in=offer_request(), now=NOW
            )
        assert exc_info.value.status_code == 404
        db.refresh(entry)
        assert entry.status == "waiting"


class TestDensity:
    def test_withdraw_compacts_queue(self, db):
        olivia = create_random_entry(db, child_first_name="Olivia")
        create_random_entry(db, child_first_name="Jack")

        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=olivia.id)

        assert waiting_positions(db) == {"Jack": 1}
        db.refresh(olivia)
        assert olivia.status == "withdrawn"
        assert olivia.position is None

    def test_release_from_the_middle(self, db):
        create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        create_random_entry(db, child_first_name="C")
        create_random_entry(db, child_first_name="D")

        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=b.id)

        assert waiting_positions(db) == {"A": 1, "C": 2, "D": 3}

    def test_offer_releases_slot(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")

        offer_entry(db, a)

        assert waiting_positions(db) == {"B": 1}

    def test_withdrawing_offered_entry_leaves_queue_untouched(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")
        create_random_entry(db, child_first_name="C")
        offer_entry(db, a)

        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=a.id)

        assert waiting_positions(db) == {"B": 1, "C": 2}

    def test_enqueue_after_release_appends(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=a.id)

        c = create_random_entry(db, child_first_name="C")

        assert c.position == 2
        assert waiting_positions(db) == {"B": 1, "C": 2}

    def test_mixed_sequence_stays_dense(self, db):
        entries = [create_random_entry(db, child_first_name=f"K{i}") for i in range(6)]
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=entries[0].id)
        offer_entry(db, entries[3])
        crud_enrolment_waitlist.mark_lost(db, org_id=ORG_ID, entry_id=entries[5].id)
        create_random_entry(db, child_first_name="K6")

        positions = sorted(waiting_positions(db).values())
        assert positions == list(range(1, len(positions) + 1))
        assert len(positions) == 4


class TestOfferManager:
    def test_offer_sets_all_fields_and_deadline(self, db):
        jack = create_random_entry(db, child_first_name="Jack")

        entry = offer_entry(db, jack)

        assert entry.status == "offered"
        assert entry.offered_slot_day == "tuesday"
        assert entry.offered_slot_time.hour == 16
        assert entry.offered_teacher_id == "tch_1"
        assert entry.offered_location_id == "loc_1"
        assert entry.offered_rate_minor == 2500
        assert as_utc(entry.offered_at) == NOW
        assert as_utc(entry.offer_expires_at) == NOW + timedelta(hours=48)

    def test_offer_uses_organisation_expiry(self, db):
        crud_organisation_settings.update(
            db,
            org_id=ORG_ID,
            settings_in=WaitlistSettingsUpdate(offer_expiry_hours=24),
        )
        entry = offer_entry(db, create_random_entry(db))

        assert as_utc(entry.offer_expires_at) == NOW + timedelta(hours=24)

    def test_offer_activity(self, db):
        entry = offer_entry(db, create_random_entry(db))

        [activity] = _activities(db, entry, "offered")
        assert activity.description == "Slot offered: Tuesday at 16:00"
        assert activity.activity_metadata["rate_minor"] == 2500
        assert activity.activity_metadata["teacher_id"] == "tch_1"

    def test_cannot_offer_twice(self, db):
        entry = offer_entry(db, create_random_entry(db))

        with pytest.raises(HTTPException) as exc_info:
            offer_entry(db, entry)
        assert exc_info.value.status_code == 422
        assert "'offered'" in exc_info.value.detail
        assert len(_activities(db, entry, "offered")) == 1

    @pytest.mark.parametrize("action,expected", [
        (OfferResponse.ACCEPT, "accepted"),
        (OfferResponse.DECLINE, "declined"),
    ])
    def test_respond(self, db, action, expected):
        entry = offer_entry(db, create_random_entry(db))

        entry = crud_enrolment_waitlist.respond_to_offer(
            db, org_id=ORG_ID, entry_id=entry.id, action=action, now=NOW
        )

        assert entry.status == expected
        assert as_utc(entry.responded_at) == NOW
        [activity] = _activities(db, entry, expected)
        assert activity.description == f"Offer {expected} by family"

    def test_respond_requires_offered(self, db):
        entry = create_random_entry(db)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.respond_to_offer(
                db, org_id=ORG_ID, entry_id=entry.id, action=OfferResponse.ACCEPT
            )
        assert exc_info.value.status_code == 422

    def test_declined_is_terminal(self, db):
        entry = offer_entry(db, create_random_entry(db))
        crud_enrolment_waitlist.respond_to_offer(
            db, org_id=ORG_ID, entry_id=entry.id, action=OfferResponse.DECLINE
        )

        with pytest.raises(HTTPException):
            crud_enrolment_waitlist.respond_to_offer(
                db, org_id=ORG_ID, entry_id=entry.id, action=OfferResponse.ACCEPT
            )
        with pytest.raises(HTTPException):
            crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=entry.id)


class TestMarkLost:
    def test_lost_from_accepted_keeps_reason(self, db):
        entry = accept_entry(db, create_random_entry(db))

        entry = crud_enrolment_waitlist.mark_lost(
            db, org_id=ORG_ID, entry_id=entry.id, reason="No reply to calls"
        )

        assert entry.status == "lost"
        [activity] = _activities(db, entry, "lost")
        assert activity.activity_metadata == {
            "previous_status": "accepted",
            "reason": "No reply to calls",
        }

    def test_lost_from_waiting_releases_position(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")

        crud_enrolment_waitlist.mark_lost(db, org_id=ORG_ID, entry_id=a.id)

        assert waiting_positions(db) == {"B": 1}

    def test_terminal_entry_cannot_be_lost(self, db):
        entry = create_random_entry(db)
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=entry.id)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.mark_lost(db, org_id=ORG_ID, entry_id=entry.id)
        assert exc_info.value.status_code == 422


class TestUpdateEntry:
    def test_priority_change_logs_old_and_new(self, db):
        entry = create_random_entry(db)

        crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=entry.id,
            update_in=WaitlistUpdateRequest(priority="urgent"),
        )

        [activity] = _activities(db, entry, "priority_changed")
        assert activity.activity_metadata == {
            "old_priority": "normal",
            "new_priority": "urgent",
        }
        assert activity.description == "Priority changed from normal to urgent"
        assert _activities(db, entry, "updated") == []

    def test_priority_and_field_edit_log_one_row(self, db):
        entry = create_random_entry(db)

        crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=entry.id,
            update_in=WaitlistUpdateRequest(priority="urgent", notes="Call after 5pm"),
        )

        assert sorted(a.activity_type for a in _activities(db, entry)) == ["created", "priority_changed"]
        [activity] = _activities(db, entry, "priority_changed")
        assert activity.activity_metadata == {
            "fields": ["notes"],
            "old_priority": "normal",
            "new_priority": "urgent",
        }

    def test_field_edit_logs_one_updated_row(self, db):
        entry = create_random_entry(db)

        entry = crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=entry.id,
            update_in=WaitlistUpdateRequest(notes="Has a keyboard at home", child_age=8),
        )

        assert entry.notes == "Has a keyboard at home"
        [activity] = _activities(db, entry, "updated")
        assert activity.activity_metadata == {"fields": ["child_age", "notes"]}

    def test_no_op_update_logs_nothing(self, db):
        entry = create_random_entry(db, child_first_name="Olivia")

        crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=entry.id,
            update_in=WaitlistUpdateRequest(child_first_name="Olivia"),
        )

        assert len(_activities(db, entry)) == 1

    def test_instrument_change_moves_between_queues(self, db):
        a = create_random_entry(db, child_first_name="A", instrument_name="Piano")
        create_random_entry(db, child_first_name="B", instrument_name="Piano")
        create_random_entry(db, child_first_name="V", instrument_name="Violin")

        a = crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=a.id,
            update_in=WaitlistUpdateRequest(instrument_name="Violin"),
        )

        assert a.position == 2
        assert waiting_positions(db, instrument_name="Piano") == {"B": 1}
        assert waiting_positions(db, instrument_name="Violin") == {"V": 1, "A": 2}
        [activity] = _activities(db, a, "updated")
        assert activity.activity_metadata["old_instrument"] == "Piano"
        assert activity.activity_metadata["new_position"] == 2

    def test_required_field_cannot_be_cleared(self, db):
        entry = create_random_entry(db)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.update_entry(
                db,
                org_id=ORG_ID,
                entry_id=entry.id,
                update_in=WaitlistUpdateRequest(contact_name=None),
            )
        assert exc_info.value.status_code == 400

    def test_terminal_entry_is_read_only(self, db):
        entry = create_random_entry(db)
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=entry.id)

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.update_entry(
                db,
                org_id=ORG_ID,
                entry_id=entry.id,
                update_in=WaitlistUpdateRequest(notes="late edit"),
            )
        assert exc_info.value.status_code == 422


class TestReorder:
    def test_move_to_front(self, db):
        a = create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        c = create_random_entry(db, child_first_name="C")

        crud_enrolment_waitlist.move_entry(db, org_id=ORG_ID, entry_id=c.id, new_position=1)

        assert waiting_positions(db) == {"C": 1, "A": 2, "B": 3}
        for entry in (a, b, c):
            assert len(_activities(db, entry, "position_changed")) == 1

    def test_move_beyond_queue_is_rejected(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.move_entry(db, org_id=ORG_ID, entry_id=a.id, new_position=3)
        assert exc_info.value.status_code == 400

    def test_reorder_logs_only_moved_entries(self, db):
        a = create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        c = create_random_entry(db, child_first_name="C")

        moved = crud_enrolment_waitlist.reorder_partition(
            db, org_id=ORG_ID, instrument_name="Piano", entry_ids=[b.id, a.id, c.id]
        )

        assert {e.id for e in moved} == {a.id, b.id}
        assert waiting_positions(db) == {"B": 1, "A": 2, "C": 3}
        assert _activities(db, c, "position_changed") == []
        [activity] = _activities(db, a, "position_changed")
        assert activity.activity_metadata == {"old_position": 1, "new_position": 2}

    def test_reorder_must_name_every_waiting_entry(self, db):
        a = create_random_entry(db, child_first_name="A")
        create_random_entry(db, child_first_name="B")

        with pytest.raises(HTTPException) as exc_info:
            crud_enrolment_waitlist.reorder_partition(
                db, org_id=ORG_ID, instrument_name="Piano", entry_ids=[a.id]
            )
        assert exc_info.value.status_code == 400


class TestListEntries:
    def test_filters_and_ordering(self, db):
        create_random_entry(db, child_first_name="Olivia", instrument_name="Violin")
        jack = create_random_entry(db, child_first_name="Jack", instrument_name="Piano")
        create_random_entry(db, child_first_name="Amelia", instrument_name="Piano", priority="high")
        create_random_entry(db, org_id=OTHER_ORG_ID, child_first_name="Leo")
        offer_entry(db, jack)

        names = [e.child_first_name for e in crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID)]
        assert names == ["Amelia", "Jack", "Olivia"]

        offered = crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, status="offered")
        assert [e.child_first_name for e in offered] == ["Jack"]

        high = crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, priority="high")
        assert [e.child_first_name for e in high] == ["Amelia"]

        found = crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, search="oliv")
        assert [e.child_first_name for e in found] == ["Olivia"]

    def test_active_filter(self, db):
        a = create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        create_random_entry(db, child_first_name="C")
        offer_entry(db, a)
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=b.id)

        active = crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, status="active")

        assert sorted(e.child_first_name for e in active) == ["A", "C"]

    def test_search_matches_wildcards_literally(self, db):
        create_random_entry(db, child_first_name="Olivia", contact_name="100% Parent")
        create_random_entry(db, child_first_name="Jack")

        found = crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, search="%")
        assert [e.child_first_name for e in found] == ["Olivia"]

        assert crud_enrolment_waitlist.list_entries(db, org_id=ORG_ID, search="_") == []


def test_every_transition_logs_exactly_one_activity(db):
    entry = create_random_entry(db)
    counts = [len(_activities(db, entry))]

    offer_entry(db, entry)
    counts.append(len(_activities(db, entry)))

    crud_enrolment_waitlist.respond_to_offer(
        db, org_id=ORG_ID, entry_id=entry.id, action=OfferResponse.ACCEPT
    )
    counts.append(len(_activities(db, entry)))

    crud_enrolment_waitlist.mark_lost(db, org_id=ORG_ID, entry_id=entry.id)
    counts.append(len(_activities(db, entry)))

    assert counts == [1, 2, 3, 4]


class TestLockOrdering:
    """Partition advisory locks come before row locks on every write path."""

    @pytest.mark.parametrize("operation", [
        lambda db, entry: offer_entry(db, entry),
        lambda db, entry: crud_enrolment_waitlist.withdraw_entry(
            db, org_id=ORG_ID, entry_id=entry.id
        ),
        lambda db, entry: crud_enrolment_waitlist.mark_lost(
            db, org_id=ORG_ID, entry_id=entry.id
        ),
        lambda db, entry: crud_enrolment_waitlist.move_entry(
            db, org_id=ORG_ID, entry_id=entry.id, new_position=1
        ),
    ], ids=["offer", "withdraw", "mark_lost", "move"])
    def test_entry_operations(self, db, monkeypatch, operation):
        create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        calls = record_lock_order(db, monkeypatch)

        operation(db, b)

        assert_partition_locks_first(calls)
        assert ("partition", "Piano") in calls

    def test_reorder(self, db, monkeypatch):
        a = create_random_entry(db, child_first_name="A")
        b = create_random_entry(db, child_first_name="B")
        calls = record_lock_order(db, monkeypatch)

        crud_enrolment_waitlist.reorder_partition(
            db, org_id=ORG_ID, instrument_name="Piano", entry_ids=[b.id, a.id]
        )

        assert_partition_locks_first(calls)

    def test_instrument_change_locks_both_queues_in_name_order(self, db, monkeypatch):
        entry = create_random_entry(db, instrument_name="Violin")
        calls = record_lock_order(db, monkeypatch)

        crud_enrolment_waitlist.update_entry(
            db,
            org_id=ORG_ID,
            entry_id=entry.id,
            update_in=WaitlistUpdateRequest(instrument_name="Piano"),
        )

        assert_partition_locks_first(calls)
        partitions = [name for kind, name in calls if kind == "partition"]
        assert partitions == ["Piano", "Violin"]


class TestConstraints:
    def test_position_is_only_held_while_waiting(self, db):
        entry = create_random_entry(db)
        crud_enrolment_waitlist.withdraw_entry(db, org_id=ORG_ID, entry_id=entry.id)

        entry.position = 1
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_unknown_status_is_rejected(self, db):
        entry = create_random_entry(db)

        entry.status = "paused"
        entry.position = None
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_unknown_priority_is_rejected(self, db):
        entry = create_random_entry(db)

        entry.priority = "whenever"
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
