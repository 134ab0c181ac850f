"""Time tracking error taxonomy.

Every error here is a terminal business outcome: it is reported to the caller
as-is and never retried. Store outages surface as ``pymongo.errors.PyMongoError``
instead, which the application maps to a retryable 503.
"""
from fastapi import status


class TimeTrackingError(ValueError):
    """Base class for time tracking business errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Time tracking error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class ActiveTimerConflict(TimeTrackingError):
    """The user already has a running timer."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "You already have a running timer. Please stop it first."


class TaskNotFound(TimeTrackingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Task not found"


class EntryNotFound(TimeTrackingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Time entry not found"


class NotOwner(TimeTrackingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to modify this time entry"


class InvalidState(TimeTrackingError):
    """The operation is not valid for the entry's running/stopped state."""

    default_message = "Operation not allowed in the entry's current state"


class InvalidDuration(TimeTrackingError):
    default_message = "Duration must be a positive number of minutes"


class InvalidRange(TimeTrackingError):
    default_message = "End time must not be before start time"
