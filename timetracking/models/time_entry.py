"""Time entry model definitions."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from timetracking.utils.time import to_naive_utc

DESCRIPTION_MAX_LENGTH = 500

# One leap year; longer entries are input errors
MAX_DURATION_MINUTES = 60 * 24 * 366


class TimeEntryBase(BaseModel):
    """Base time entry fields."""

    task_id: str
    project_id: str
    description: str = ""
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    is_running: bool = False


class TimeEntry(TimeEntryBase):
    """Full time entry model with database fields."""

    id: str = Field(alias="_id", serialization_alias="id")
    user_id: str
    created_at: datetime
    updated_at: datetime

    # Resolved from the task directory when listing or reporting
    task_title: Optional[str] = None
    project_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class _EntryRequest(BaseModel):
    """Shared validation for client-supplied entry fields."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class TimerStart(_EntryRequest):
    """Request model for starting a timer."""

    task_id: str
    description: str = Field("", max_length=DESCRIPTION_MAX_LENGTH)


class TimeEntryCreate(_EntryRequest):
    """Manual time entry creation model."""

    task_id: str
    description: str = Field("", max_length=DESCRIPTION_MAX_LENGTH)
    duration_minutes: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Store absolute timestamps as naive UTC."""
        return to_naive_utc(value)


class TimeEntryUpdate(_EntryRequest):
    """Time entry update model - only stopped entries can be edited."""

    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    duration_minutes: Optional[int] = None


class RunningTimer(BaseModel):
    """The user's active timer with server-computed elapsed time."""

    time_entry: TimeEntry
    elapsed_seconds: int


class TimeEntryList(BaseModel):
    """Filtered listing of a user's time entries."""

    count: int
    total_minutes: int
    total_hours: float
    time_entries: list[TimeEntry]


class ProjectSummary(BaseModel):
    """Aggregated time for one project within a timesheet."""

    project_id: str
    project_name: Optional[str] = None
    total_minutes: int
    total_hours: float
    percentage: float
    entries: list[TimeEntry]


class Timesheet(BaseModel):
    """Timesheet report over a date range."""

    start: datetime
    end: datetime
    total_minutes: int
    total_hours: float
    entry_count: int
    by_project: list[ProjectSummary]
    time_entries: list[TimeEntry]


class EntryFilter(BaseModel):
    """Store query filter. The start/end bounds apply to start_time, inclusive."""

    user_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    task_id: Optional[str] = None
    project_id: Optional[str] = None
    include_running: bool = True
