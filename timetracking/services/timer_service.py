"""Timer service - business logic for time tracking."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pymongo.errors import PyMongoError

from timetracking.exceptions import (
    EntryNotFound,
    InvalidDuration,
    InvalidRange,
    InvalidState,
    NotOwner,
    TaskNotFound,
)
from timetracking.models.task import TaskRef
from timetracking.models.time_entry import (
    MAX_DURATION_MINUTES,
    EntryFilter,
    RunningTimer,
    TimeEntry,
    TimeEntryCreate,
    TimeEntryList,
    TimeEntryUpdate,
)
from timetracking.services.task_directory import TaskDirectory
from timetracking.services.time_entry_store import TimeEntryStore
from timetracking.utils.time import utcnow, whole_minutes

logger = logging.getLogger(__name__)


def _require_positive_duration(duration_minutes: Optional[int]) -> int:
    # bool is an int subclass; reject it explicitly
    if (
        duration_minutes is None
        or isinstance(duration_minutes, bool)
        or duration_minutes <= 0
    ):
        raise InvalidDuration()
    if duration_minutes > MAX_DURATION_MINUTES:
        raise InvalidDuration(
            f"Duration cannot exceed {MAX_DURATION_MINUTES} minutes"
        )
    return duration_minutes


class TimerService:
    """Service for handling time tracking operations."""

    def __init__(self, db, clock: Callable[[], datetime] = utcnow):
        """
        Initialize service with database connection.

        Args:
            db: Database connection
            clock: Source of the current naive UTC time
        """
        self.db = db
        self.store = TimeEntryStore(db)
        self.tasks = TaskDirectory(db)
        self.clock = clock

    async def _resolve_task(self, task_id: str) -> TaskRef:
        task = await self.tasks.resolve_task(task_id)
        if task is None:
            raise TaskNotFound()
        return task

    async def _get_owned(self, user_id: str, entry_id: str) -> TimeEntry:
        """
        Fetch an entry and check it belongs to the user.

        Raises:
            EntryNotFound: If the entry does not exist
            NotOwner: If the entry belongs to another user
        """
        entry = await self.store.get(entry_id)
        if entry is None:
            raise EntryNotFound()
        if entry.user_id != user_id:
            raise NotOwner()
        return entry

    async def _record_task_hours(self, task_id: str, duration_minutes: int) -> None:
        """
        Add tracked time to the task's actual_hours.

        The entry is already committed when this runs, so a failed counter
        update is logged rather than reported as a failed stop or create.
        """
        try:
            await self.tasks.add_actual_hours(task_id, duration_minutes / 60)
        except PyMongoError:
            logger.exception("Failed to add %d minute(s) to task %s", duration_minutes, task_id)

    async def start(
        self,
        user_id: str,
        task_id: str,
        description: str = "",
    ) -> TimeEntry:
        """
        Start a new timer.

        Args:
            user_id: User ID
            task_id: Task to track time against
            description: Optional description

        Returns:
            Created running time entry

        Raises:
            TaskNotFound: If the task doesn't exist
            ActiveTimerConflict: If the user already has a running timer
        """
        task = await self._resolve_task(task_id)

        entry = await self.store.insert_running(
            user_id=user_id,
            task_id=task.id,
            project_id=task.project_id,
            start_time=self.clock(),
            description=description,
        )
        logger.info("Started timer %s for user %s on task %s", entry.id, user_id, task.id)
        return entry

    async def stop(self, user_id: str, entry_id: str) -> TimeEntry:
        """
        Stop a running timer.

        The task's actual_hours is updated after the entry is finalized; a
        failure there does not undo or fail the stop.

        Args:
            user_id: User ID
            entry_id: Time entry ID

        Returns:
            Finalized time entry with end_time and duration

        Raises:
            EntryNotFound: If the entry doesn't exist
            NotOwner: If the entry belongs to another user
            InvalidState: If the timer is not running
        """
        entry = await self._get_owned(user_id, entry_id)
        if not entry.is_running:
            raise InvalidState("Timer is not running")

        end_time = max(self.clock(), entry.start_time)
        duration = whole_minutes(entry.start_time, end_time)

        stopped = await self.store.finalize(entry_id, end_time, duration)
        await self._record_task_hours(stopped.task_id, duration)

        logger.info("Stopped timer %s after %d minute(s)", entry_id, duration)
        return stopped

    async def create_manual(
        self,
        user_id: str,
        entry_create: TimeEntryCreate,
    ) -> TimeEntry:
        """
        Create a manual (already finalized) time entry.

        The duration may be omitted when both start and end are given, in which
        case it is computed from the range. Missing timestamps are derived from
        the duration, anchored at now when neither is supplied.

        Args:
            user_id: User ID
            entry_create: Manual entry data

        Returns:
            Created time entry

        Raises:
            InvalidRange: If end_time is before start_time, or a derived
                timestamp falls outside the representable range
            InvalidDuration: If the duration is missing, not positive or
                longer than MAX_DURATION_MINUTES
            TaskNotFound: If the task doesn't exist
        """
        start_time = entry_create.start_time
        end_time = entry_create.end_time
        duration = entry_create.duration_minutes

        if start_time and end_time:
            if end_time < start_time:
                raise InvalidRange()
            if duration is None:
                duration = whole_minutes(start_time, end_time)

        duration = _require_positive_duration(duration)

        if start_time is None and end_time is None:
            end_time = self.clock()
        try:
            if start_time is None:
                start_time = end_time - timedelta(minutes=duration)
            elif end_time is None:
                end_time = start_time + timedelta(minutes=duration)
        except OverflowError as e:
            raise InvalidRange("Entry falls outside the supported date range") from e

        task = await self._resolve_task(entry_create.task_id)

        entry = await self.store.insert_stopped(
            user_id=user_id,
            task_id=task.id,
            project_id=task.project_id,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration,
            description=entry_create.description,
        )
        await self._record_task_hours(task.id, duration)

        logger.info("Created manual entry %s (%d minutes) for user %s", entry.id, duration, user_id)
        return entry

    async def get_running_for(self, user_id: str) -> Optional[RunningTimer]:
        """
        Get the user's running timer with elapsed time.

        Elapsed time is derived from the stored start time on every call.

        Args:
            user_id: User ID

        Returns:
            Running timer, or None
        """
        entry = await self.store.get_running(user_id)
        if entry is None:
            return None

        elapsed = max(0, int((self.clock() - entry.start_time).total_seconds()))
        return RunningTimer(time_entry=entry, elapsed_seconds=elapsed)

    async def get_entry(self, user_id: str, entry_id: str) -> TimeEntry:
        """Get a single entry owned by the user."""
        return await self._get_owned(user_id, entry_id)

    async def list_entries(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> TimeEntryList:
        """
        List time entries for a user with optional filtering.

        Running entries are included and count as zero minutes.

        Args:
            user_id: User ID
            start: Optional lower bound on start_time
            end: Optional upper bound on start_time
            task_id: Optional task filter
            project_id: Optional project filter

        Returns:
            Entries (most recent first) with their total
        """
        entries = await self.store.query(EntryFilter(
            user_id=user_id,
            start=start,
            end=end,
            task_id=task_id,
            project_id=project_id,
        ))
        entries = await self.tasks.annotate(entries)

        total = sum(entry.duration_minutes or 0 for entry in entries)
        return TimeEntryList(
            count=len(entries),
            total_minutes=total,
            total_hours=round(total / 60, 2),
            time_entries=entries,
        )

    async def update_entry(
        self,
        user_id: str,
        entry_id: str,
        entry_update: TimeEntryUpdate,
    ) -> TimeEntry:
        """
        Update a stopped time entry.

        Raises:
            EntryNotFound: If the entry doesn't exist
            NotOwner: If the entry belongs to another user
            InvalidState: If the entry is still running
            InvalidDuration: If a new duration is not positive
        """
        await self._get_owned(user_id, entry_id)

        patch = entry_update.model_dump(exclude_none=True)
        if "duration_minutes" in patch:
            _require_positive_duration(patch["duration_minutes"])

        return await self.store.update(entry_id, patch)

    async def delete_entry(self, user_id: str, entry_id: str) -> dict:
        """
        Delete a stopped time entry.

        Returns:
            Dictionary with deleted_count

        Raises:
            EntryNotFound: If the entry doesn't exist
            NotOwner: If the entry belongs to another user
            InvalidState: If the entry is still running
        """
        await self._get_owned(user_id, entry_id)

        deleted_count = await self.store.delete(entry_id)
        logger.info("Deleted time entry %s", entry_id)
        return {"deleted_count": deleted_count}
