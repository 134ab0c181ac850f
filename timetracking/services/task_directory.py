"""Task directory - read access to tasks and projects owned by the project service."""
import logging
from typing import Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId

from timetracking.config import settings
from timetracking.models.task import TaskRef
from timetracking.models.time_entry import TimeEntry

logger = logging.getLogger(__name__)


def _object_ids(ids: Iterable[str]) -> list[ObjectId]:
    """Convert string IDs to ObjectIds, dropping malformed ones."""
    object_ids = []
    for value in set(ids):
        try:
            object_ids.append(ObjectId(value))
        except (InvalidId, TypeError):
            continue
    return object_ids


class TaskDirectory:
    """Resolves tasks and project names from the shared database."""

    def __init__(self, db):
        """Initialize directory with database connection."""
        self.db = db
        self.tasks = db[settings.tasks_collection]
        self.projects = db[settings.projects_collection]

    async def resolve_task(self, task_id: str) -> Optional[TaskRef]:
        """
        Look up a task and its parent project.

        Args:
            task_id: Task ID

        Returns:
            Task reference, or None if the task does not exist
        """
        object_ids = _object_ids([task_id])
        if not object_ids:
            return None

        task = await self.tasks.find_one({"_id": object_ids[0]})
        if not task or not task.get("project_id"):
            return None

        return TaskRef(
            id=str(task["_id"]),
            project_id=str(task["project_id"]),
            title=task.get("title"),
        )

    async def _names(self, collection, ids: Iterable[str], field: str) -> dict[str, str]:
        object_ids = _object_ids(ids)
        if not object_ids:
            return {}

        cursor = collection.find({"_id": {"$in": object_ids}}, {field: 1})
        docs = await cursor.to_list(length=None)
        return {str(doc["_id"]): doc[field] for doc in docs if doc.get(field)}

    async def task_titles(self, task_ids: Iterable[str]) -> dict[str, str]:
        """Map task IDs to titles; unknown tasks are omitted."""
        return await self._names(self.tasks, task_ids, "title")

    async def project_names(self, project_ids: Iterable[str]) -> dict[str, str]:
        """Map project IDs to names; unknown projects are omitted."""
        return await self._names(self.projects, project_ids, "name")

    async def add_actual_hours(self, task_id: str, hours: float) -> None:
        """Add tracked hours to a task's running actual_hours total."""
        object_ids = _object_ids([task_id])
        if not object_ids or hours <= 0:
            return

        await self.tasks.update_one(
            {"_id": object_ids[0]},
            {"$inc": {"actual_hours": hours}},
        )
        logger.debug("Added %.2fh to task %s", hours, task_id)

    async def annotate(self, entries: list[TimeEntry]) -> list[TimeEntry]:
        """Return copies of the entries with task titles and project names filled in."""
        if not entries:
            return []

        task_titles = await self.task_titles(entry.task_id for entry in entries)
        project_names = await self.project_names(entry.project_id for entry in entries)

        return [
            entry.model_copy(update={
                "task_title": task_titles.get(entry.task_id),
                "project_name": project_names.get(entry.project_id),
            })
            for entry in entries
        ]
