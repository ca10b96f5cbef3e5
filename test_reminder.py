"""Tests for the reminder store.

Covers CRUD with ownership checks, validation, and the scheduler queries
(due-window selection and claiming).
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import crud
from clock import ensure_utc
from conftest import NOW, reload
from database import CategoryEnum, Reminder
from exceptions import ReminderNotFound, ReminderValidationError, StoreUnavailable, UserAlreadyExists


def test_reminder_crud_flow(db, user):
    """Create, list, complete and delete a reminder"""
    due_dt = NOW + timedelta(hours=2)

    reminder = crud.create_reminder(db, user.user_id, "Test Meeting", "meeting", due_dt, "Room 4")
    assert reminder.reminder_id is not None
    assert reminder.category == CategoryEnum.MEETING
    assert isinstance(reminder.reminder_time, datetime), "reminder_time should be datetime object!"
    assert ensure_utc(reminder.reminder_time) == due_dt
    assert reminder.is_notified is False
    assert reminder.is_completed is False

    reminders = crud.list_reminders_for_owner(db, user.user_id)
    assert [r.reminder_id for r in reminders] == [reminder.reminder_id]

    crud.mark_completed(db, reminder.reminder_id, user.user_id)
    completed = reload(db, reminder.reminder_id)
    assert completed.is_completed is True
    assert completed.is_notified is True

    crud.delete_reminder(db, reminder.reminder_id, user.user_id)
    assert crud.get_reminder(db, reminder.reminder_id, user.user_id) is None


def test_create_reminder_normalizes_to_utc(db, user):
    ist = timezone(timedelta(hours=5, minutes=30))
    local = datetime(2025, 11, 6, 15, 0, tzinfo=ist)

    reminder = crud.create_reminder(db, user.user_id, "Pills", "MEDICINE", local)

    assert reminder.category == CategoryEnum.MEDICINE
    assert ensure_utc(reminder.reminder_time) == datetime(2025, 11, 6, 9, 30, tzinfo=timezone.utc)
    assert reminder.notes is None


@pytest.mark.parametrize("title, category, when", [
    (None, "workout", NOW),
    ("   ", "workout", NOW),
    ("Run", None, NOW),
    ("Run", "gardening", NOW),
    ("Run", "workout", None),
    ("Run", "workout", "tomorrow"),
])
def test_create_reminder_rejects_bad_input(db, user, title, category, when):
    with pytest.raises(ReminderValidationError):
        crud.create_reminder(db, user.user_id, title, category, when)

    assert db.query(Reminder).count() == 0


def test_list_is_ascending_and_owner_scoped(db, user, other_user):
    later = crud.create_reminder(db, user.user_id, "Later", "other", NOW + timedelta(days=2))
    sooner = crud.create_reminder(db, user.user_id, "Sooner", "other", NOW + timedelta(hours=1))
    crud.create_reminder(db, other_user.user_id, "Not mine", "other", NOW)

    reminders = crud.list_reminders_for_owner(db, user.user_id)

    assert [r.reminder_id for r in reminders] == [sooner.reminder_id, later.reminder_id]


def test_mark_completed_twice_is_noop(db, user):
    reminder = crud.create_reminder(db, user.user_id, "Gym", "workout", NOW)

    crud.mark_completed(db, reminder.reminder_id, user.user_id)
    crud.mark_completed(db, reminder.reminder_id, user.user_id)

    row = reload(db, reminder.reminder_id)
    assert (row.is_completed, row.is_notified) == (True, True)


def test_other_user_cannot_complete_or_delete(db, user, other_user):
    reminder = crud.create_reminder(db, user.user_id, "Standup", "meeting", NOW + timedelta(minutes=3))

    with pytest.raises(ReminderNotFound):
        crud.mark_completed(db, reminder.reminder_id, other_user.user_id)
    with pytest.raises(ReminderNotFound):
        crud.delete_reminder(db, reminder.reminder_id, other_user.user_id)

    row = reload(db, reminder.reminder_id)
    assert row is not None
    assert (row.is_completed, row.is_notified) == (False, False)


def test_missing_reminder_raises_not_found(db, user):
    with pytest.raises(ReminderNotFound):
        crud.mark_completed(db, 9999, user.user_id)
    with pytest.raises(ReminderNotFound):
        crud.delete_reminder(db, 9999, user.user_id)


def test_duplicate_email_rejected(db, user):
    with pytest.raises(UserAlreadyExists):
        crud.create_user(db, "Someone Else", user.email, "hash")


def test_select_due_unnotified_window(db, user, other_user):
    at_start = crud.create_reminder(db, user.user_id, "At start", "medicine", NOW)
    inside = crud.create_reminder(db, other_user.user_id, "Inside", "meeting", NOW + timedelta(minutes=3))
    at_end = crud.create_reminder(db, user.user_id, "At end", "workout", NOW + timedelta(minutes=5))
    crud.create_reminder(db, user.user_id, "Too late", "other", NOW + timedelta(minutes=5, seconds=1))
    crud.create_reminder(db, user.user_id, "Overdue", "other", NOW - timedelta(seconds=1))
    done = crud.create_reminder(db, user.user_id, "Done", "other", NOW + timedelta(minutes=1))
    crud.mark_completed(db, done.reminder_id, user.user_id)
    notified = crud.create_reminder(db, user.user_id, "Notified", "other", NOW + timedelta(minutes=2))
    crud.mark_notified(db, notified.reminder_id)

    due = crud.select_due_unnotified(db, NOW, NOW + timedelta(minutes=5))

    assert [d.reminder.reminder_id for d in due] == [
        at_start.reminder_id, inside.reminder_id, at_end.reminder_id
    ]
    assert (due[1].owner_email, due[1].owner_name) == ("ben@example.com", "Ben Ito")
    assert due[0].reminder.title == "At start"


def test_select_without_lower_bound_includes_overdue(db, user):
    overdue = crud.create_reminder(db, user.user_id, "Overdue", "other", NOW - timedelta(hours=3))

    due = crud.select_due_unnotified(db, None, NOW + timedelta(minutes=5))

    assert [d.reminder.reminder_id for d in due] == [overdue.reminder_id]


def test_claim_succeeds_once(db, user):
    reminder = crud.create_reminder(db, user.user_id, "Call mom", "other", NOW)

    # two scans that both selected the reminder before either claimed it
    first = crud.select_due_unnotified(db, NOW, NOW + timedelta(minutes=5))
    second = crud.select_due_unnotified(db, NOW, NOW + timedelta(minutes=5))
    assert len(first) == len(second) == 1

    assert crud.claim_reminder(db, reminder.reminder_id) is True
    assert crud.claim_reminder(db, reminder.reminder_id) is False
    assert reload(db, reminder.reminder_id).is_notified is True


def test_claim_loses_against_completion(db, user):
    reminder = crud.create_reminder(db, user.user_id, "Call mom", "other", NOW)
    crud.select_due_unnotified(db, NOW, NOW + timedelta(minutes=5))

    crud.mark_completed(db, reminder.reminder_id, user.user_id)

    assert crud.claim_reminder(db, reminder.reminder_id) is False


def test_mark_notified_is_idempotent(db, user):
    reminder = crud.create_reminder(db, user.user_id, "Stretch", "workout", NOW)

    crud.mark_notified(db, reminder.reminder_id)
    crud.mark_notified(db, reminder.reminder_id)

    row = reload(db, reminder.reminder_id)
    assert (row.is_notified, row.is_completed) == (True, False)


def test_database_failure_becomes_store_unavailable():
    # no tables created, so every statement fails at the driver level
    engine = create_engine("sqlite://")
    session = sessionmaker(bind=engine)()
    try:
        with pytest.raises(StoreUnavailable):
            crud.list_reminders_for_owner(session, 1)
        with pytest.raises(StoreUnavailable):
            crud.select_due_unnotified(session, NOW, NOW + timedelta(minutes=5))
    finally:
        session.close()
        engine.dispose()
