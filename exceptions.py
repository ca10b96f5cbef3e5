"""Error taxonomy shared by the store, the scheduler and the API."""


class ReminderServiceError(Exception):
    """Base class for all service errors."""


class ReminderValidationError(ReminderServiceError):
    """Bad input to create a reminder. Nothing was written."""


class ReminderNotFound(ReminderServiceError):
    """No reminder matches both the id and the owner. Nothing was written."""

    def __init__(self, reminder_id):
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class UserAlreadyExists(ReminderServiceError):
    """Signup with an e-mail that is already registered."""

    def __init__(self, email):
        super().__init__(f"Email already registered: {email}")
        self.email = email


class StoreUnavailable(ReminderServiceError):
    """The backing database failed (connection lost, locked, etc.)."""


class DeliveryFailure(ReminderServiceError):
    """A delivery channel could not hand off a notification."""


class SchedulerFailure(ReminderServiceError):
    """Too many scans failed in a row; the worker gives up."""
