"""Timesheet service - read-only aggregation of time entries by project."""
from collections import defaultdict
from datetime import datetime
from typing import Optional

from timetracking.models.time_entry import (
    EntryFilter,
    ProjectSummary,
    TimeEntry,
    Timesheet,
)
from timetracking.services.task_directory import TaskDirectory
from timetracking.services.time_entry_store import TimeEntryStore

# Percentages are apportioned in hundredths of a percent
PERCENT_UNITS = 100 * 100


def apportion_percentages(totals: list[int]) -> list[float]:
    """
    Split 100% across totals, rounded to 2 decimals, summing to exactly 100.00.

    Uses largest-remainder rounding in integer hundredths: every share is
    floored, then the leftover hundredths go to the largest remainders, ties
    to the earlier position.

    Examples:
        >>> apportion_percentages([1, 1, 1])
        [33.34, 33.33, 33.33]
        >>> apportion_percentages([0, 0])
        [0.0, 0.0]
    """
    whole = sum(totals)
    if whole == 0:
        return [0.0 for _ in totals]

    units = [total * PERCENT_UNITS // whole for total in totals]
    remainders = [total * PERCENT_UNITS % whole for total in totals]

    leftover = PERCENT_UNITS - sum(units)
    by_remainder = sorted(range(len(totals)), key=lambda i: (-remainders[i], i))
    for i in by_remainder[:leftover]:
        units[i] += 1

    return [unit / 100 for unit in units]


def build_timesheet(
    entries: list[TimeEntry],
    start: datetime,
    end: datetime,
) -> Timesheet:
    """
    Aggregate finalized entries into a timesheet.

    Running entries are skipped: only measured, finalized time is reported.
    Minute sums are integers; only hours and percentages are rounded floats.
    Projects are ordered by total minutes descending, then name (unnamed
    projects last), then ID, so identical input always renders identically.

    Args:
        entries: Entries ordered most recent first, with project names
            already resolved
        start: Start of the reported range
        end: End of the reported range

    Returns:
        Timesheet report
    """
    finalized = [entry for entry in entries if not entry.is_running]

    grouped: dict[str, list[TimeEntry]] = defaultdict(list)
    for entry in finalized:
        grouped[entry.project_id].append(entry)

    grand_total = sum(entry.duration_minutes or 0 for entry in finalized)

    by_project = []
    for project_id, project_entries in grouped.items():
        project_total = sum(entry.duration_minutes or 0 for entry in project_entries)
        by_project.append(ProjectSummary(
            project_id=project_id,
            project_name=project_entries[0].project_name,
            total_minutes=project_total,
            total_hours=round(project_total / 60, 2),
            percentage=0.0,
            entries=project_entries,
        ))

    by_project.sort(key=lambda summary: (
        -summary.total_minutes,
        summary.project_name is None,
        summary.project_name or "",
        summary.project_id,
    ))

    percentages = apportion_percentages([summary.total_minutes for summary in by_project])
    for summary, percentage in zip(by_project, percentages):
        summary.percentage = percentage

    return Timesheet(
        start=start,
        end=end,
        total_minutes=grand_total,
        total_hours=round(grand_total / 60, 2),
        entry_count=len(finalized),
        by_project=by_project,
        time_entries=finalized,
    )


class TimesheetAggregator:
    """Produces timesheet reports without mutating any data."""

    def __init__(self, db):
        """Initialize aggregator with database connection."""
        self.db = db
        self.store = TimeEntryStore(db)
        self.tasks = TaskDirectory(db)

    async def summarize(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Timesheet:
        """
        Summarize a user's finalized time between start and end (inclusive).

        Args:
            user_id: User ID
            start: Lower bound on entry start_time
            end: Upper bound on entry start_time
            task_id: Optional task filter
            project_id: Optional project filter

        Returns:
            Timesheet grouped by project
        """
        entries = await self.store.query(EntryFilter(
            user_id=user_id,
            start=start,
            end=end,
            task_id=task_id,
            project_id=project_id,
            include_running=False,
        ))
        entries = await self.tasks.annotate(entries)

        return build_timesheet(entries, start, end)
