"""CRUD operations for Necessity Reminder.

This module is the reminder store: every read and write of users and reminders
goes through here. Reminder operations are always scoped to the owning user,
and every state change on a reminder is a single conditional UPDATE/DELETE so
that the scheduler and request handlers can touch the same rows concurrently
without producing mixed flag combinations.

IMPORTANT: All datetime parameters are datetime objects, NOT strings, and are
normalized to UTC before they reach the database.
"""

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from clock import ensure_utc
from database import CategoryEnum, Reminder, User
from exceptions import (
    ReminderNotFound, ReminderValidationError, StoreUnavailable, UserAlreadyExists
)
from logger_config import setup_logger

logger = setup_logger(__name__, 'crud.log')


@dataclass
class DueReminder:
    """A reminder selected for notification, joined with its owner's identity."""
    reminder: Reminder
    owner_email: str
    owner_name: str


def _store_errors(func):
    """Roll back and re-raise driver failures as StoreUnavailable."""
    @functools.wraps(func)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            db.rollback()
            logger.error(f"Store failure in {func.__name__}: {e.orig or e}")
            raise StoreUnavailable(f"Database unavailable: {e.orig or e}") from e
    return wrapper


def parse_category(value: Union[str, CategoryEnum, None]) -> CategoryEnum:
    """Convert 'medicine' / 'MEDICINE' / CategoryEnum.MEDICINE to the enum.

    Raises:
        ReminderValidationError: if the value is missing or not a known category
    """
    if isinstance(value, CategoryEnum):
        return value
    if not value or not isinstance(value, str):
        raise ReminderValidationError("Category is required")
    try:
        return CategoryEnum(value.strip().lower())
    except ValueError:
        allowed = ", ".join(c.value for c in CategoryEnum)
        raise ReminderValidationError(f"Unknown category '{value}' (expected one of: {allowed})")


# ==================== USERS ====================

@_store_errors
def create_user(db: Session, full_name: str, email: str, password_hash: str) -> User:
    """Create a user.

    Raises:
        UserAlreadyExists: if the e-mail is already registered
    """
    if get_user_by_email(db, email):
        raise UserAlreadyExists(email)

    user = User(full_name=full_name, email=email, password=password_hash)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"User created: {user.user_id} ({user.email})")
    return user


@_store_errors
def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


@_store_errors
def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.user_id == user_id).first()


# ==================== REMINDERS ====================

@_store_errors
def create_reminder(
    db: Session,
    owner_id: int,
    title: str,
    category: Union[str, CategoryEnum],
    reminder_time: datetime,
    notes: Optional[str] = None
) -> Reminder:
    """Create a new reminder owned by ``owner_id``.

    Args:
        db: Database session
        owner_id: Authenticated user id
        title: Non-empty title
        category: medicine, workout, meeting or other
        reminder_time: When the reminder is due (MUST be datetime object!)
        notes: Optional free text

    Returns:
        Reminder: Created reminder, not yet notified or completed

    Raises:
        ReminderValidationError: on missing fields or unknown category
    """
    if title is None or not str(title).strip():
        raise ReminderValidationError("Title is required")
    if reminder_time is None:
        raise ReminderValidationError("Reminder time is required")
    if not isinstance(reminder_time, datetime):
        raise ReminderValidationError("Reminder time must be a datetime")
    category_enum = parse_category(category)

    db_reminder = Reminder(
        user_id=owner_id,
        title=str(title).strip(),
        category=category_enum,
        reminder_time=ensure_utc(reminder_time),
        notes=notes or None,
        is_notified=False,
        is_completed=False,
    )

    db.add(db_reminder)
    db.commit()
    db.refresh(db_reminder)
    logger.info(f"Reminder {db_reminder.reminder_id} created for user {owner_id}")
    return db_reminder


@_store_errors
def list_reminders_for_owner(db: Session, owner_id: int) -> List[Reminder]:
    """All reminders of a user, earliest due first."""
    return db.query(Reminder).filter(
        Reminder.user_id == owner_id
    ).order_by(Reminder.reminder_time.asc(), Reminder.reminder_id.asc()).all()


@_store_errors
def get_reminder(db: Session, reminder_id: int, owner_id: int) -> Optional[Reminder]:
    """Get a reminder by id, only if it belongs to ``owner_id``."""
    return db.query(Reminder).filter(
        Reminder.reminder_id == reminder_id,
        Reminder.user_id == owner_id
    ).first()


@_store_errors
def mark_completed(db: Session, reminder_id: int, owner_id: int) -> None:
    """Mark a reminder completed. Also sets is_notified so no later scan picks it up.

    Calling it again on an already completed reminder succeeds and changes nothing.

    Raises:
        ReminderNotFound: if no reminder matches both id and owner
    """
    matched = db.query(Reminder).filter(
        Reminder.reminder_id == reminder_id,
        Reminder.user_id == owner_id
    ).update(
        {Reminder.is_completed: True, Reminder.is_notified: True},
        synchronize_session=False
    )
    db.commit()

    if matched == 0:
        raise ReminderNotFound(reminder_id)
    logger.info(f"Reminder {reminder_id} marked completed by user {owner_id}")


@_store_errors
def delete_reminder(db: Session, reminder_id: int, owner_id: int) -> None:
    """Delete a reminder.

    Raises:
        ReminderNotFound: if no reminder matches both id and owner
    """
    deleted = db.query(Reminder).filter(
        Reminder.reminder_id == reminder_id,
        Reminder.user_id == owner_id
    ).delete(synchronize_session=False)
    db.commit()

    if deleted == 0:
        raise ReminderNotFound(reminder_id)
    logger.info(f"Reminder {reminder_id} deleted by user {owner_id}")


# ==================== SCHEDULER ====================

@_store_errors
def select_due_unnotified(
    db: Session,
    window_start: Optional[datetime],
    window_end: datetime
) -> List[DueReminder]:
    """Get reminders due inside the window that are neither notified nor completed.

    Both bounds are inclusive. ``window_start=None`` means no lower bound, which
    also returns overdue reminders that were never notified.

    Returns:
        List[DueReminder]: reminders joined with owner e-mail and name, earliest first
    """
    query = db.query(Reminder, User.email, User.full_name).join(
        User, Reminder.user_id == User.user_id
    ).filter(
        Reminder.is_notified == False,  # noqa: E712
        Reminder.is_completed == False,  # noqa: E712
        Reminder.reminder_time <= ensure_utc(window_end)
    )
    if window_start is not None:
        query = query.filter(Reminder.reminder_time >= ensure_utc(window_start))

    rows = query.order_by(Reminder.reminder_time.asc(), Reminder.reminder_id.asc()).all()

    # Detach the snapshots so the claim commits that follow do not expire them
    for reminder, _, _ in rows:
        db.expunge(reminder)

    return [
        DueReminder(reminder=reminder, owner_email=email, owner_name=full_name)
        for reminder, email, full_name in rows
    ]


@_store_errors
def claim_reminder(db: Session, reminder_id: int) -> bool:
    """Atomically flip is_notified for a reminder that is still eligible.

    Returns:
        bool: True only for the caller that actually claimed it. False if it was
        already notified, completed or deleted in the meantime.
    """
    claimed = db.query(Reminder).filter(
        Reminder.reminder_id == reminder_id,
        Reminder.is_notified == False,  # noqa: E712
        Reminder.is_completed == False  # noqa: E712
    ).update({Reminder.is_notified: True}, synchronize_session=False)
    db.commit()
    return claimed == 1


@_store_errors
def mark_notified(db: Session, reminder_id: int) -> None:
    """Set is_notified unconditionally. Safe to call any number of times."""
    db.query(Reminder).filter(
        Reminder.reminder_id == reminder_id
    ).update({Reminder.is_notified: True}, synchronize_session=False)
    db.commit()
