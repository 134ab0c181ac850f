"""Pytest configuration and fixtures."""
import os

# Settings are read at import time; provide test defaults before anything loads them.
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import AsyncClient, ASGITransport
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from timetracking.config import settings


@pytest_asyncio.fixture
async def test_db():
    """
    Provide a clean test database.

    Skips the test when MongoDB is not reachable, and drops the database
    afterwards.
    """
    test_client = AsyncIOMotorClient(settings.mongodb_url, serverSelectionTimeoutMS=2000)
    try:
        await test_client.admin.command("ping")
    except PyMongoError:
        test_client.close()
        pytest.skip("MongoDB is not available")

    test_db_name = f"{settings.mongodb_db_name}_test"
    await test_client.drop_database(test_db_name)
    db = test_client[test_db_name]

    yield db

    await test_client.drop_database(test_db_name)
    test_client.close()


@pytest_asyncio.fixture
async def app_client(test_db):
    """
    Create a test client bound to the test database.

    This fixture:
    - Points the application's database at the test database
    - Creates the time entry indexes (lifespan does not run under ASGITransport)
    - Yields an async HTTP client for testing
    """
    from timetracking.database import database
    from timetracking.main import app
    from timetracking.services.time_entry_store import TimeEntryStore

    original_db = database.db
    database.db = test_db
    await TimeEntryStore(test_db).ensure_indexes()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    database.db = original_db


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user ID."""
    from timetracking.utils.auth import create_access_token

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def seed_task(test_db):
    """Insert a project and a task into the directory collections."""

    async def _seed(task_title: str, project_name: str, project_id: ObjectId | None = None) -> dict:
        if project_id is None:
            project_id = (await test_db[settings.projects_collection].insert_one(
                {"name": project_name}
            )).inserted_id
        task_id = (await test_db[settings.tasks_collection].insert_one({
            "title": task_title,
            "project_id": project_id,
            "actual_hours": 0,
        })).inserted_id
        return {"task_id": str(task_id), "project_id": str(project_id)}

    return _seed
