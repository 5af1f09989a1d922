"""
Integration tests for the API endpoints.
"""

from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient

from jobqueue.constants import JobStatus
from jobqueue.exceptions import ProcessorFailure
from jobqueue.queue.service import JobQueue


def fail(payload, job):
    raise RuntimeError("downstream unavailable")


class TestJobAPI:
    """Integration tests for job API endpoints."""

    @pytest_asyncio.fixture
    async def created_job(
        self,
        client: AsyncClient,
        org_headers: dict[str, str],
    ) -> dict:
        """Create a job for testing."""
        response = await client.post(
            "/v1/jobs",
            json={"job_type": "echo", "payload": {"test": True}, "max_retries": 1},
            headers={**org_headers, "Idempotency-Key": f"test-{uuid4().hex}"},
        )
        return response.json()

    async def test_create_job_success(
        self,
        client: AsyncClient,
        org_headers: dict[str, str],
        organization_id: str,
        idempotency_key: str,
    ):
        """Test successful job creation."""
        response = await client.post(
            "/v1/jobs",
            json={"job_type": "send_invoice", "payload": {"invoice_id": "inv-1"}},
            headers={**org_headers, "Idempotency-Key": idempotency_key},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["idempotency_key"] == idempotency_key
        assert data["organization_id"] == organization_id
        assert data["status"] == JobStatus.QUEUED
        assert data["triggered_by"] == "ops@example.com"
        assert data["retry_count"] == 0
        assert data["max_retries"] == 3

    async def test_create_job_idempotency(
        self,
        client: AsyncClient,
        org_headers: dict[str, str],
        idempotency_key: str,
    ):
        """Test idempotent job submission."""
        headers = {**org_headers, "Idempotency-Key": idempotency_key}

        response1 = await client.post("/v1/jobs", json={"job_type": "echo"}, headers=headers)
        response2 = await client.post(
            "/v1/jobs",
            json={"job_type": "echo", "payload": {"different": True}},
            headers=headers,
        )

        assert response1.status_code == 201
        assert response2.status_code == 200
        assert response1.json()["id"] == response2.json()["id"]
        assert response2.json()["payload"] == {}

    async def test_create_job_without_idempotency_key(
        self, client: AsyncClient, org_headers: dict[str, str]
    ):
        response = await client.post("/v1/jobs", json={"job_type": "echo"}, headers=org_headers)

        assert response.status_code == 201
        assert response.json()["idempotency_key"].startswith("echo-")

    async def test_create_job_missing_organization(self, client: AsyncClient):
        response = await client.post("/v1/jobs", json={"job_type": "echo"})

        assert response.status_code == 422

    async def test_create_job_invalid_body(self, client: AsyncClient, org_headers: dict[str, str]):
        response = await client.post(
            "/v1/jobs",
            json={"job_type": "echo", "max_retries": 0},
            headers=org_headers,
        )

        assert response.status_code == 422

    async def test_get_job_success(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        response = await client.get(f"/v1/jobs/{created_job['id']}", headers=org_headers)

        assert response.status_code == 200
        assert response.json()["id"] == created_job["id"]
        assert response.json()["payload"] == {"test": True}

    async def test_get_job_not_found(self, client: AsyncClient, org_headers: dict[str, str]):
        response = await client.get(f"/v1/jobs/{uuid4()}", headers=org_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_get_job_other_organization(self, client: AsyncClient, created_job: dict):
        response = await client.get(
            f"/v1/jobs/{created_job['id']}",
            headers={"X-Organization-ID": "someone-else"},
        )

        assert response.status_code == 404

    async def test_list_jobs(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        await client.post("/v1/jobs", json={"job_type": "report"}, headers=org_headers)

        response = await client.get("/v1/jobs", headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["limit"] == 50
        assert data["offset"] == 0
        assert data["jobs"][0]["job_type"] == "report"

    async def test_list_jobs_with_filters(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        await client.post("/v1/jobs", json={"job_type": "report"}, headers=org_headers)

        by_type = await client.get("/v1/jobs", params={"job_type": "echo"}, headers=org_headers)
        by_status = await client.get(
            "/v1/jobs", params={"status": "completed"}, headers=org_headers
        )

        assert [j["id"] for j in by_type.json()["jobs"]] == [created_job["id"]]
        assert by_status.json()["count"] == 0

    async def test_get_job_stats(
        self,
        client: AsyncClient,
        org_headers: dict[str, str],
        job_queue: JobQueue,
        created_job: dict,
    ):
        await job_queue.process_job(UUID(created_job["id"]), lambda payload, job: "ok")
        await client.post("/v1/jobs", json={"job_type": "report"}, headers=org_headers)

        response = await client.get("/v1/jobs/stats", headers=org_headers)

        assert response.status_code == 200
        stats = response.json()
        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["queued"] == 1
        assert stats["by_type"]["echo"] == {"total": 1, "completed": 1, "failed": 0}

    async def test_cancel_job(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        response = await client.post(f"/v1/jobs/{created_job['id']}/cancel", headers=org_headers)

        assert response.status_code == 200
        assert response.json()["status"] == JobStatus.CANCELLED

    async def test_cancel_twice_conflicts(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        await client.post(f"/v1/jobs/{created_job['id']}/cancel", headers=org_headers)

        response = await client.post(f"/v1/jobs/{created_job['id']}/cancel", headers=org_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"
        assert "cancelled" in response.json()["detail"]

    async def test_replay_dead_letter(
        self,
        client: AsyncClient,
        org_headers: dict[str, str],
        job_queue: JobQueue,
        created_job: dict,
    ):
        with pytest.raises(ProcessorFailure) as exc_info:
            await job_queue.process_job(UUID(created_job["id"]), fail)
        assert exc_info.value.job.status == JobStatus.DEAD_LETTER

        response = await client.post(f"/v1/jobs/{created_job['id']}/replay", headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == JobStatus.QUEUED
        assert data["retry_count"] == 0
        assert data["error"] is None

    async def test_replay_queued_job_conflicts(
        self, client: AsyncClient, org_headers: dict[str, str], created_job: dict
    ):
        response = await client.post(f"/v1/jobs/{created_job['id']}/replay", headers=org_headers)

        assert response.status_code == 409

    async def test_cancel_unknown_job(self, client: AsyncClient, org_headers: dict[str, str]):
        response = await client.post(f"/v1/jobs/{uuid4()}/cancel", headers=org_headers)

        assert response.status_code == 404


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Test health check endpoint."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_liveness(self, client: AsyncClient):
        """Test liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json()["alive"] is True

    async def test_readiness(self, client: AsyncClient):
        """Test readiness endpoint."""
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json()["ready"] is True

    async def test_metrics(self, client: AsyncClient, org_headers: dict[str, str]):
        """Test metrics endpoint."""
        await client.post("/v1/jobs", json={"job_type": "echo"}, headers=org_headers)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "jobs_enqueued_total" in response.text
