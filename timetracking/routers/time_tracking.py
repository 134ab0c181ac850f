"""Time tracking endpoints - timers, manual entries and timesheets."""
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from timetracking.database import get_database
from timetracking.dependencies import get_current_user_id
from timetracking.exceptions import InvalidRange, TimeTrackingError
from timetracking.models.time_entry import (
    RunningTimer,
    TimeEntry,
    TimeEntryCreate,
    TimeEntryList,
    TimeEntryUpdate,
    Timesheet,
    TimerStart,
)
from timetracking.services.timer_service import TimerService
from timetracking.services.timesheet_service import TimesheetAggregator
from timetracking.utils.csv_export import render_timesheet_csv, timesheet_filename
from timetracking.utils.time import current_week, end_of_day, start_of_day


router = APIRouter(prefix="/time-tracking", tags=["time-tracking"])


def _http_error(e: TimeTrackingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _report_range(
    start_date: Optional[date],
    end_date: Optional[date],
) -> tuple[datetime, datetime]:
    """Resolve report dates to an inclusive datetime range, defaulting to this week."""
    week_start, week_end = current_week()
    start_date = start_date or week_start
    end_date = end_date or week_end

    if end_date < start_date:
        raise _http_error(InvalidRange("end_date must not be before start_date"))

    return start_of_day(start_date), end_of_day(end_date)


@router.post("/start", response_model=TimeEntry, status_code=status.HTTP_201_CREATED)
async def start_timer(
    timer_start: TimerStart,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Start a new timer.

    - Requires authentication
    - Only one timer can run at a time (409 otherwise; fetch /running instead of retrying)
    - Task must exist
    """
    service = TimerService(db)
    try:
        return await service.start(
            user_id=user_id,
            task_id=timer_start.task_id,
            description=timer_start.description,
        )
    except TimeTrackingError as e:
        raise _http_error(e)


@router.get("/running", response_model=Optional[RunningTimer])
async def get_running_timer(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get the running timer, if any.

    - Requires authentication
    - Returns null when no timer is running
    - elapsed_seconds is computed server-side from the stored start time
    """
    service = TimerService(db)
    return await service.get_running_for(user_id=user_id)


@router.post("/manual", response_model=TimeEntry, status_code=status.HTTP_201_CREATED)
async def create_manual_entry(
    entry_create: TimeEntryCreate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Create a manual time entry.

    - Requires authentication
    - Task must exist
    - duration_minutes must be positive; it is computed when omitted and
      both start_time and end_time are given
    - Never conflicts with a running timer
    """
    service = TimerService(db)
    try:
        return await service.create_manual(
            user_id=user_id,
            entry_create=entry_create,
        )
    except TimeTrackingError as e:
        raise _http_error(e)


@router.get("", response_model=TimeEntryList)
async def list_entries(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    task_id: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    List time entries for the authenticated user.

    - Requires authentication
    - Optional filters: start_date, end_date, task_id, project_id
    - Results sorted by start_time descending (most recent first)
    """
    service = TimerService(db)
    return await service.list_entries(
        user_id=user_id,
        start=start_date,
        end=end_date,
        task_id=task_id,
        project_id=project_id,
    )


@router.get("/timesheet", response_model=Timesheet)
async def get_timesheet(
    start_date: Optional[date] = Query(None, description="First day (defaults to this Monday)"),
    end_date: Optional[date] = Query(None, description="Last day, inclusive (defaults to this Sunday)"),
    task_id: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get a timesheet report grouped by project.

    - Requires authentication
    - Only stopped entries count toward totals
    """
    start, end = _report_range(start_date, end_date)
    aggregator = TimesheetAggregator(db)
    return await aggregator.summarize(
        user_id=user_id,
        start=start,
        end=end,
        task_id=task_id,
        project_id=project_id,
    )


@router.get("/timesheet/export")
async def export_timesheet(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    task_id: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Export the timesheet's entries as CSV.

    - Requires authentication
    - Columns: Date, Task, Project, Description, Duration (hours)
    """
    start, end = _report_range(start_date, end_date)
    aggregator = TimesheetAggregator(db)
    timesheet = await aggregator.summarize(
        user_id=user_id,
        start=start,
        end=end,
        task_id=task_id,
        project_id=project_id,
    )

    return Response(
        content=render_timesheet_csv(timesheet),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{timesheet_filename(timesheet)}"',
        },
    )


@router.get("/{entry_id}", response_model=TimeEntry)
async def get_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Get a specific time entry by ID.

    - Requires authentication
    - User must own the entry
    """
    service = TimerService(db)
    try:
        return await service.get_entry(user_id=user_id, entry_id=entry_id)
    except TimeTrackingError as e:
        raise _http_error(e)


@router.put("/{entry_id}/stop", response_model=TimeEntry)
async def stop_timer(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Stop a running timer.

    - Requires authentication
    - User must own the entry
    - Entry must be running
    """
    service = TimerService(db)
    try:
        return await service.stop(user_id=user_id, entry_id=entry_id)
    except TimeTrackingError as e:
        raise _http_error(e)


@router.put("/{entry_id}", response_model=TimeEntry)
async def update_entry(
    entry_id: str,
    entry_update: TimeEntryUpdate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Update a stopped time entry's description or duration.

    - Requires authentication
    - User must own the entry
    - Running entries must be stopped first
    """
    service = TimerService(db)
    try:
        return await service.update_entry(
            user_id=user_id,
            entry_id=entry_id,
            entry_update=entry_update,
        )
    except TimeTrackingError as e:
        raise _http_error(e)


@router.delete("/{entry_id}")
async def delete_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Delete a time entry.

    - Requires authentication
    - User must own the entry
    - Running entries must be stopped first
    - Hard delete (permanent)
    """
    service = TimerService(db)
    try:
        return await service.delete_entry(
            user_id=user_id,
            entry_id=entry_id,
        )
    except TimeTrackingError as e:
        raise _http_error(e)
