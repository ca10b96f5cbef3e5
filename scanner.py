"""Due-window scanner.

Once per scheduler tick the scanner selects the reminders entering their
notification window and claims them (is_notified = True) BEFORE anything is
sent. Claim-then-send makes delivery at-most-once: a reminder whose send fails
afterwards stays notified and is not retried by a later tick. Sending a
reminder twice is considered worse than occasionally missing one.
"""

from datetime import timedelta
from typing import Callable, List

from sqlalchemy.orm import Session

import crud
from clock import Clock, utc_now
from exceptions import StoreUnavailable
from logger_config import setup_logger

logger = setup_logger(__name__, 'scheduler.log')

DEFAULT_LOOKAHEAD = timedelta(minutes=5)


class DueWindowScanner:
    """Selects and claims reminders due within ``[now, now + lookahead]``.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        clock: Returns the current UTC time
        lookahead: Width of the due window
        catch_up: Drop the lower bound so overdue, never-notified reminders
            (e.g. missed while the worker was down) are picked up as well
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock = utc_now,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
        catch_up: bool = False
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.lookahead = lookahead
        self.catch_up = catch_up

    def window(self):
        now = self.clock()
        window_start = None if self.catch_up else now
        return window_start, now + self.lookahead

    def scan(self) -> List[crud.DueReminder]:
        """Run one scan.

        Returns:
            The reminders this scan claimed. Each is returned by exactly one scan.
            A reminder whose claim fails is logged and left for a later tick.

        Raises:
            StoreUnavailable: if the selection query fails
        """
        window_start, window_end = self.window()

        db = self.session_factory()
        try:
            candidates = crud.select_due_unnotified(db, window_start, window_end)
            if not candidates:
                logger.debug(f"No reminders due before {window_end.isoformat()}")
                return []

            claimed = []
            for due in candidates:
                reminder_id = due.reminder.reminder_id
                try:
                    won = crud.claim_reminder(db, reminder_id)
                except StoreUnavailable as e:
                    # not claimed, so a later tick can still pick it up
                    logger.error(f"Could not claim reminder {reminder_id}: {str(e)}")
                    continue

                if won:
                    claimed.append(due)
                else:
                    # completed, deleted or claimed by someone else since the select
                    logger.info(f"Reminder {reminder_id} no longer eligible, skipping")

            logger.info(
                f"Claimed {len(claimed)}/{len(candidates)} due reminder(s) "
                f"in window ending {window_end.isoformat()}"
            )
            return claimed
        finally:
            db.close()
