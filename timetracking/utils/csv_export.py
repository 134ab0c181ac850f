"""CSV rendering for timesheet exports."""
import csv
import io

from timetracking.models.time_entry import Timesheet

CSV_HEADERS = ["Date", "Task", "Project", "Description", "Duration (hours)"]
MISSING = "N/A"


def render_timesheet_csv(timesheet: Timesheet) -> str:
    """
    Render a timesheet's flat entry list as CSV, one row per entry.

    Args:
        timesheet: Timesheet report

    Returns:
        CSV text with a header row
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for entry in timesheet.time_entries:
        writer.writerow([
            entry.start_time.date().isoformat(),
            entry.task_title or MISSING,
            entry.project_name or MISSING,
            entry.description,
            f"{(entry.duration_minutes or 0) / 60:.2f}",
        ])

    return buffer.getvalue()


def timesheet_filename(timesheet: Timesheet) -> str:
    """Download filename, e.g. ``timesheet_2025-11-03_to_2025-11-09.csv``."""
    return (
        f"timesheet_{timesheet.start.date().isoformat()}"
        f"_to_{timesheet.end.date().isoformat()}.csv"
    )
