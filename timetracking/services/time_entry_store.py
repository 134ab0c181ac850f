"""Time entry store - durable CRUD for time entries.

The store is the single enforcement point for "one running timer per user".
Exclusivity comes from a unique partial index on ``user_id`` restricted to
``is_running: true`` documents, so concurrent starts from any number of
service instances are serialized by MongoDB itself.
"""
import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from timetracking.config import settings
from timetracking.exceptions import (
    ActiveTimerConflict,
    EntryNotFound,
    InvalidState,
)
from timetracking.models.time_entry import EntryFilter, TimeEntry
from timetracking.utils.time import utcnow

logger = logging.getLogger(__name__)

RUNNING_INDEX_NAME = "one_running_timer_per_user"

# Fields a stopped entry may have edited after the fact
MUTABLE_FIELDS = frozenset({"description", "duration_minutes"})


def _object_id(entry_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(entry_id)
    except (InvalidId, TypeError):
        return None


class TimeEntryStore:
    """MongoDB-backed store for time entries."""

    def __init__(self, db):
        """Initialize store with database connection."""
        self.db = db
        self.time_entries = db[settings.time_entries_collection]

    def _doc_to_entry(self, doc: dict) -> TimeEntry:
        """
        Convert database document to TimeEntry model.
        """
        return TimeEntry(
            _id=str(doc["_id"]),
            user_id=doc["user_id"],
            task_id=doc["task_id"],
            project_id=doc["project_id"],
            description=doc.get("description", ""),
            start_time=doc["start_time"],
            end_time=doc.get("end_time"),
            duration_minutes=doc.get("duration_minutes"),
            is_running=doc.get("is_running", False),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )

    async def ensure_indexes(self) -> None:
        """
        Create the indexes the store relies on.

        Safe to call repeatedly; MongoDB ignores identical index definitions.
        """
        await self.time_entries.create_index(
            [("user_id", ASCENDING)],
            name=RUNNING_INDEX_NAME,
            unique=True,
            partialFilterExpression={"is_running": True},
        )
        await self.time_entries.create_index(
            [("user_id", ASCENDING), ("start_time", DESCENDING)],
            name="user_start_time",
        )
        await self.time_entries.create_index(
            [("project_id", ASCENDING)],
            name="project_id",
        )
        logger.info("Ensured indexes on %s", settings.time_entries_collection)

    async def _insert(self, entry_doc: dict) -> TimeEntry:
        now = utcnow()
        entry_doc.setdefault("created_at", now)
        entry_doc.setdefault("updated_at", now)

        result = await self.time_entries.insert_one(entry_doc)
        entry_doc["_id"] = result.inserted_id

        return self._doc_to_entry(entry_doc)

    async def insert_running(
        self,
        user_id: str,
        task_id: str,
        project_id: str,
        start_time: datetime,
        description: str = "",
    ) -> TimeEntry:
        """
        Insert a running entry unless the user already has one.

        The existence check and the insert are a single atomic operation:
        the partial unique index rejects a second running document.

        Raises:
            ActiveTimerConflict: If the user already has a running timer
        """
        entry_doc = {
            "user_id": user_id,
            "task_id": task_id,
            "project_id": project_id,
            "description": description,
            "start_time": start_time,
            "end_time": None,
            "duration_minutes": None,
            "is_running": True,
        }

        try:
            return await self._insert(entry_doc)
        except DuplicateKeyError as e:
            logger.warning("Rejected second running timer for user %s", user_id)
            raise ActiveTimerConflict() from e

    async def insert_stopped(
        self,
        user_id: str,
        task_id: str,
        project_id: str,
        start_time: datetime,
        end_time: datetime,
        duration_minutes: int,
        description: str = "",
    ) -> TimeEntry:
        """Insert an already finalized entry. No exclusivity check applies."""
        entry_doc = {
            "user_id": user_id,
            "task_id": task_id,
            "project_id": project_id,
            "description": description,
            "start_time": start_time,
            "end_time": end_time,
            "duration_minutes": duration_minutes,
            "is_running": False,
        }
        return await self._insert(entry_doc)

    async def get(self, entry_id: str) -> Optional[TimeEntry]:
        """Fetch an entry by ID; malformed IDs are treated as missing."""
        object_id = _object_id(entry_id)
        if object_id is None:
            return None

        doc = await self.time_entries.find_one({"_id": object_id})
        return self._doc_to_entry(doc) if doc else None

    async def get_running(self, user_id: str) -> Optional[TimeEntry]:
        """Return the user's running entry, if any."""
        doc = await self.time_entries.find_one({
            "user_id": user_id,
            "is_running": True,
        })
        return self._doc_to_entry(doc) if doc else None

    async def _raise_for_missed_write(self, object_id: Optional[ObjectId], message: str):
        """
        Explain why a conditional write on ``is_running`` matched nothing.

        Raises:
            EntryNotFound: If the entry does not exist
            InvalidState: If it exists but is in the wrong running state
        """
        if object_id is None or not await self.time_entries.find_one({"_id": object_id}):
            raise EntryNotFound()
        raise InvalidState(message)

    async def finalize(
        self,
        entry_id: str,
        end_time: datetime,
        duration_minutes: int,
    ) -> TimeEntry:
        """
        Transition a running entry to stopped.

        Raises:
            EntryNotFound: If the entry does not exist
            InvalidState: If the entry is already stopped
        """
        object_id = _object_id(entry_id)
        updated_doc = None

        if object_id is not None:
            updated_doc = await self.time_entries.find_one_and_update(
                {"_id": object_id, "is_running": True},
                {"$set": {
                    "end_time": end_time,
                    "duration_minutes": duration_minutes,
                    "is_running": False,
                    "updated_at": utcnow(),
                }},
                return_document=ReturnDocument.AFTER,
            )

        if not updated_doc:
            await self._raise_for_missed_write(object_id, "Timer is not running")

        return self._doc_to_entry(updated_doc)

    async def query(self, entry_filter: EntryFilter) -> list[TimeEntry]:
        """
        List entries matching a filter, most recent start first.
        """
        query = {
            "user_id": entry_filter.user_id,
        }

        if entry_filter.task_id:
            query["task_id"] = entry_filter.task_id
        if entry_filter.project_id:
            query["project_id"] = entry_filter.project_id
        if not entry_filter.include_running:
            query["is_running"] = False

        if entry_filter.start or entry_filter.end:
            query["start_time"] = {}
            if entry_filter.start:
                query["start_time"]["$gte"] = entry_filter.start
            if entry_filter.end:
                query["start_time"]["$lte"] = entry_filter.end

        cursor = self.time_entries.find(query).sort("start_time", DESCENDING)
        entry_docs = await cursor.to_list(length=None)

        return [self._doc_to_entry(doc) for doc in entry_docs]

    async def update(self, entry_id: str, patch: dict) -> TimeEntry:
        """
        Apply a patch to a stopped entry.

        Raises:
            EntryNotFound: If the entry does not exist
            InvalidState: If the entry is running or the patch touches
                fields that cannot be edited
        """
        rejected = set(patch) - MUTABLE_FIELDS
        if rejected:
            raise InvalidState(f"Cannot update field(s): {', '.join(sorted(rejected))}")

        object_id = _object_id(entry_id)
        updated_doc = None

        if object_id is not None:
            updated_doc = await self.time_entries.find_one_and_update(
                {"_id": object_id, "is_running": False},
                {"$set": {**patch, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )

        if not updated_doc:
            await self._raise_for_missed_write(
                object_id, "Stop the running timer before editing it"
            )

        return self._doc_to_entry(updated_doc)

    async def delete(self, entry_id: str) -> int:
        """
        Delete a stopped entry (hard delete).

        Returns:
            Number of deleted documents

        Raises:
            EntryNotFound: If the entry does not exist
            InvalidState: If the entry is still running
        """
        object_id = _object_id(entry_id)
        deleted_count = 0

        if object_id is not None:
            result = await self.time_entries.delete_one({
                "_id": object_id,
                "is_running": False,
            })
            deleted_count = result.deleted_count

        if not deleted_count:
            await self._raise_for_missed_write(
                object_id, "Stop the running timer before deleting it"
            )

        return deleted_count
