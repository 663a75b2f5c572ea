"""Integration tests for the /jobs and /sync endpoints."""

import pytest

pytestmark = pytest.mark.integration

API = "/api/v1"


class TestJobs:
    async def test_create_and_poll(self, client):
        response = await client.post(
            f"{API}/jobs",
            json={"job_type": "export", "payload": {"format": "csv"}, "priority": 2},
        )
        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert response.json()["status"] == "pending"

        job = (await client.get(f"{API}/jobs/{job_id}")).json()
        assert job["job_type"] == "export"
        assert job["payload"] == {"format": "csv"}
        assert job["priority"] == 2
        assert job["attempts"] == 0

    async def test_unknown_job_type_rejected(self, client):
        response = await client.post(f"{API}/jobs", json={"job_type": "teleport"})
        assert response.status_code == 422

    async def test_list_filters_by_status(self, client):
        first = (await client.post(f"{API}/jobs", json={"job_type": "draft"})).json()["job_id"]
        await client.post(f"{API}/jobs", json={"job_type": "export"})
        await client.post(f"{API}/jobs/{first}/cancel")

        body = (await client.get(f"{API}/jobs", params={"status": "cancelled"})).json()
        assert [j["id"] for j in body["jobs"]] == [first]

    async def test_cancel_twice_conflicts(self, client):
        job_id = (await client.post(f"{API}/jobs", json={"job_type": "draft"})).json()["job_id"]

        first = await client.post(f"{API}/jobs/{job_id}/cancel")
        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"

        second = await client.post(f"{API}/jobs/{job_id}/cancel")
        assert second.status_code == 409
        assert second.json()["error"] == "invalid_state"

    async def test_missing_job(self, client):
        response = await client.get(f"{API}/jobs/does-not-exist")
        assert response.status_code == 404


class TestSync:
    async def test_trigger_enqueues_ingest_job(self, client):
        response = await client.post(f"{API}/sync/courtlistener/opinions")
        assert response.status_code == 202
        job = (await client.get(f"{API}/jobs/{response.json()['job_id']}")).json()
        assert job["job_type"] == "ingest"
        assert job["payload"] == {"source_id": "courtlistener", "collection": "opinions"}
        assert job["priority"] == 10

    async def test_duplicate_trigger_conflicts(self, client):
        await client.post(f"{API}/sync/courtlistener/opinions")
        response = await client.post(f"{API}/sync/courtlistener/opinions")
        assert response.status_code == 409
        assert response.json()["error"] == "already_running"

        other = await client.post(f"{API}/sync/courtlistener/dockets", json={"priority": 1})
        assert other.status_code == 202

    async def test_trigger_unknown_source(self, client):
        response = await client.post(f"{API}/sync/pacer/cases")
        assert response.status_code == 404

    async def test_cursor_not_found(self, client):
        response = await client.get(f"{API}/sync/cursors/courtlistener/opinions")
        assert response.status_code == 404

    async def test_cursors_listed_after_run(self, client, app):
        tracker = app.state.container.cursor_tracker
        await tracker.begin_run("courtlistener", "opinions")
        await tracker.complete_run("courtlistener", "opinions", "cursor-9", 12, 0)

        listing = (await client.get(f"{API}/sync/cursors")).json()
        assert [c["collection"] for c in listing["cursors"]] == ["opinions"]

        cursor = (await client.get(f"{API}/sync/cursors/courtlistener/opinions")).json()
        assert cursor["status"] == "success"
        assert cursor["cursor_token"] == "cursor-9"
        assert cursor["records_processed"] == 12
