"""Integration tests for time tracking endpoints."""
import asyncio
import csv
import io
import pytest
from bson import ObjectId
from datetime import timedelta

from timetracking.utils.time import utcnow


@pytest.mark.asyncio
class TestTimerStart:
    """Tests for starting a timer."""

    async def test_start_timer_success(self, app_client, auth_headers, seed_task):
        """Test starting a timer successfully."""
        task = await seed_task("Write report", "Website")

        response = await app_client.post(
            "/time-tracking/start",
            json={"task_id": task["task_id"], "description": "Working on feature"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["task_id"] == task["task_id"]
        assert data["project_id"] == task["project_id"]
        assert data["description"] == "Working on feature"
        assert data["is_running"] is True
        assert data["end_time"] is None
        assert data["duration_minutes"] is None

    async def test_start_timer_with_running_timer(self, app_client, auth_headers, seed_task):
        """Test a second start before stopping fails with 409."""
        first = await seed_task("Task one", "Website")
        second = await seed_task("Task two", "Mobile")
        headers = auth_headers("alice")

        await app_client.post("/time-tracking/start", json={"task_id": first["task_id"]}, headers=headers)
        response = await app_client.post(
            "/time-tracking/start",
            json={"task_id": second["task_id"]},
            headers=headers,
        )

        assert response.status_code == 409
        assert "already have a running timer" in response.json()["detail"]

    async def test_concurrent_starts_single_winner(self, app_client, auth_headers, seed_task, test_db):
        """Test concurrent starts for one user leave exactly one running entry."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")

        responses = await asyncio.gather(*[
            app_client.post("/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers)
            for _ in range(5)
        ])

        codes = sorted(response.status_code for response in responses)
        assert codes == [201, 409, 409, 409, 409]
        running = await test_db["time_entries"].count_documents({"user_id": "alice", "is_running": True})
        assert running == 1

    async def test_different_users_run_independently(self, app_client, auth_headers, seed_task):
        """Test the exclusivity rule is per user."""
        task = await seed_task("Write report", "Website")

        for user in ("alice", "bob"):
            response = await app_client.post(
                "/time-tracking/start",
                json={"task_id": task["task_id"]},
                headers=auth_headers(user),
            )
            assert response.status_code == 201

    async def test_start_timer_with_invalid_task(self, app_client, auth_headers):
        """Test starting timer with non-existent task fails."""
        response = await app_client.post(
            "/time-tracking/start",
            json={"task_id": str(ObjectId())},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 404
        assert "task not found" in response.json()["detail"].lower()

    async def test_start_timer_requires_auth(self, app_client):
        """Test that starting timer requires authentication."""
        response = await app_client.post(
            "/time-tracking/start",
            json={"task_id": str(ObjectId())},
        )

        assert response.status_code == 401


@pytest.mark.asyncio
class TestTimerStopAndRunning:
    """Tests for stopping and fetching the running timer."""

    async def test_stop_timer_success(self, app_client, auth_headers, seed_task, test_db):
        """Test stopping a running timer records duration and task hours."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers,
        )).json()

        # Backdate the start so the stop measures 15m30s
        await test_db["time_entries"].update_one(
            {"_id": ObjectId(started["id"])},
            {"$set": {"start_time": utcnow() - timedelta(minutes=15, seconds=30)}},
        )

        response = await app_client.put(f"/time-tracking/{started['id']}/stop", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["is_running"] is False
        assert data["end_time"] is not None
        assert data["duration_minutes"] == 15

        task_doc = await test_db["tasks"].find_one({"_id": ObjectId(task["task_id"])})
        assert task_doc["actual_hours"] == pytest.approx(0.25)

    async def test_stop_already_stopped(self, app_client, auth_headers, seed_task):
        """Test stopping twice fails with InvalidState."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers,
        )).json()

        await app_client.put(f"/time-tracking/{started['id']}/stop", headers=headers)
        response = await app_client.put(f"/time-tracking/{started['id']}/stop", headers=headers)

        assert response.status_code == 400
        assert "not running" in response.json()["detail"].lower()

    async def test_stop_by_other_user(self, app_client, auth_headers, seed_task):
        """Test a non-owner cannot stop the timer."""
        task = await seed_task("Write report", "Website")
        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=auth_headers("alice"),
        )).json()

        response = await app_client.put(
            f"/time-tracking/{started['id']}/stop",
            headers=auth_headers("mallory"),
        )

        assert response.status_code == 403

    async def test_stop_missing_entry(self, app_client, auth_headers):
        """Test stopping an unknown entry fails with 404."""
        response = await app_client.put(
            f"/time-tracking/{ObjectId()}/stop",
            headers=auth_headers("alice"),
        )

        assert response.status_code == 404

    async def test_get_running(self, app_client, auth_headers, seed_task):
        """Test the running timer comes with server-side elapsed time."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")

        response = await app_client.get("/time-tracking/running", headers=headers)
        assert response.status_code == 200
        assert response.json() is None

        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers,
        )).json()

        response = await app_client.get("/time-tracking/running", headers=headers)
        data = response.json()
        assert data["time_entry"]["id"] == started["id"]
        assert data["elapsed_seconds"] >= 0


@pytest.mark.asyncio
class TestManualEntries:
    """Tests for manual time entries."""

    async def test_create_manual_while_running(self, app_client, auth_headers, seed_task):
        """Test manual entries never conflict with a running timer."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        await app_client.post("/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers)

        response = await app_client.post(
            "/time-tracking/manual",
            json={"task_id": task["task_id"], "duration_minutes": 120},
            headers=headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["is_running"] is False
        assert data["duration_minutes"] == 120

    async def test_create_manual_invalid_duration(self, app_client, auth_headers, seed_task):
        """Test a zero duration is rejected."""
        task = await seed_task("Write report", "Website")

        response = await app_client.post(
            "/time-tracking/manual",
            json={"task_id": task["task_id"], "duration_minutes": 0},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 400

    async def test_create_manual_invalid_range(self, app_client, auth_headers, seed_task):
        """Test an end before the start is rejected."""
        task = await seed_task("Write report", "Website")

        response = await app_client.post(
            "/time-tracking/manual",
            json={
                "task_id": task["task_id"],
                "duration_minutes": 30,
                "start_time": "2025-11-03T10:00:00Z",
                "end_time": "2025-11-03T09:00:00Z",
            },
            headers=auth_headers("alice"),
        )

        assert response.status_code == 400
        assert "end time" in response.json()["detail"].lower()


@pytest.mark.asyncio
class TestEntryEditing:
    """Tests for reading, updating and deleting entries."""

    async def _manual(self, app_client, headers, task_id, minutes=60):
        response = await app_client.post(
            "/time-tracking/manual",
            json={"task_id": task_id, "duration_minutes": minutes},
            headers=headers,
        )
        return response.json()

    async def test_update_entry(self, app_client, auth_headers, seed_task):
        """Test editing a stopped entry."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        entry = await self._manual(app_client, headers, task["task_id"])

        response = await app_client.put(
            f"/time-tracking/{entry['id']}",
            json={"description": "Reviewed draft", "duration_minutes": 45},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["description"] == "Reviewed draft"
        assert response.json()["duration_minutes"] == 45

    async def test_update_running_entry(self, app_client, auth_headers, seed_task):
        """Test a running entry must be stopped before editing."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers,
        )).json()

        response = await app_client.put(
            f"/time-tracking/{started['id']}",
            json={"description": "Edited"},
            headers=headers,
        )

        assert response.status_code == 400

    async def test_update_cannot_touch_running_flag(self, app_client, auth_headers, seed_task):
        """Test is_running is not client-editable."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        entry = await self._manual(app_client, headers, task["task_id"])

        response = await app_client.put(
            f"/time-tracking/{entry['id']}",
            json={"is_running": True},
            headers=headers,
        )

        assert response.status_code == 422

    async def test_delete_entry(self, app_client, auth_headers, seed_task):
        """Test deleting a stopped entry."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        entry = await self._manual(app_client, headers, task["task_id"])

        response = await app_client.delete(f"/time-tracking/{entry['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["deleted_count"] == 1

        response = await app_client.get(f"/time-tracking/{entry['id']}", headers=headers)
        assert response.status_code == 404

    async def test_delete_running_entry(self, app_client, auth_headers, seed_task):
        """Test a running entry cannot be deleted."""
        task = await seed_task("Write report", "Website")
        headers = auth_headers("alice")
        started = (await app_client.post(
            "/time-tracking/start", json={"task_id": task["task_id"]}, headers=headers,
        )).json()

        response = await app_client.delete(f"/time-tracking/{started['id']}", headers=headers)

        assert response.status_code == 400

    async def test_delete_by_other_user(self, app_client, auth_headers, seed_task):
        """Test a non-owner cannot delete the entry."""
        task = await seed_task("Write report", "Website")
        entry = await self._manual(app_client, auth_headers("alice"), task["task_id"])

        response = await app_client.delete(
            f"/time-tracking/{entry['id']}",
            headers=auth_headers("mallory"),
        )

        assert response.status_code == 403

    async def test_list_entries(self, app_client, auth_headers, seed_task):
        """Test listing entries with totals, filtered by project."""
        website = await seed_task("Write report", "Website")
        mobile = await seed_task("Fix crash", "Mobile")
        headers = auth_headers("alice")
        await self._manual(app_client, headers, website["task_id"], 60)
        await self._manual(app_client, headers, mobile["task_id"], 30)

        response = await app_client.get("/time-tracking", headers=headers)
        data = response.json()
        assert data["count"] == 2
        assert data["total_minutes"] == 90
        assert data["total_hours"] == 1.5

        response = await app_client.get(
            "/time-tracking",
            params={"project_id": website["project_id"]},
            headers=headers,
        )
        data = response.json()
        assert data["count"] == 1
        assert data["time_entries"][0]["project_name"] == "Website"
        assert data["time_entries"][0]["task_title"] == "Write report"


@pytest.mark.asyncio
class TestTimesheet:
    """Tests for timesheet reporting and export."""

    async def _seed_week(self, app_client, auth_headers, seed_task):
        p1 = await seed_task("Design", "P1")
        p2 = await seed_task("Build", "P2")
        headers = auth_headers("alice")
        for task_id, minutes, start in [
            (p1["task_id"], 45, "2025-11-03T09:00:00Z"),
            (p1["task_id"], 15, "2025-11-04T09:00:00Z"),
            (p2["task_id"], 40, "2025-11-05T09:00:00Z"),
            (p2["task_id"], 500, "2025-11-20T09:00:00Z"),  # outside the week
        ]:
            await app_client.post(
                "/time-tracking/manual",
                json={"task_id": task_id, "duration_minutes": minutes, "start_time": start},
                headers=headers,
            )
        # A running timer must not count
        await app_client.post("/time-tracking/start", json={"task_id": p2["task_id"]}, headers=headers)
        return headers

    async def test_timesheet_groups_by_project(self, app_client, auth_headers, seed_task):
        """Test P1=60 and P2=40 give 60% and 40%, P1 first."""
        headers = await self._seed_week(app_client, auth_headers, seed_task)

        response = await app_client.get(
            "/time-tracking/timesheet",
            params={"start_date": "2025-11-03", "end_date": "2025-11-09"},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_minutes"] == 100
        assert data["total_hours"] == 1.67
        assert data["entry_count"] == 3
        assert [
            (group["project_name"], group["total_minutes"], group["percentage"])
            for group in data["by_project"]
        ] == [("P1", 60, 60.0), ("P2", 40, 40.0)]
        starts = [entry["start_time"] for entry in data["time_entries"]]
        assert starts == sorted(starts, reverse=True)

    async def test_timesheet_rejects_inverted_dates(self, app_client, auth_headers):
        """Test end_date before start_date is rejected."""
        response = await app_client.get(
            "/time-tracking/timesheet",
            params={"start_date": "2025-11-09", "end_date": "2025-11-03"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 400

    async def test_timesheet_export_csv(self, app_client, auth_headers, seed_task):
        """Test the CSV export has one row per finalized entry."""
        headers = await self._seed_week(app_client, auth_headers, seed_task)

        response = await app_client.get(
            "/time-tracking/timesheet/export",
            params={"start_date": "2025-11-03", "end_date": "2025-11-09"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "timesheet_2025-11-03_to_2025-11-09.csv" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == ["Date", "Task", "Project", "Description", "Duration (hours)"]
        assert rows[1] == ["2025-11-05", "Build", "P2", "", "0.67"]
        assert len(rows) == 4
