"""Integration tests for the connection health endpoint."""

from datetime import datetime, timedelta, timezone

from models.ingestion_job import JOB_COMPLETED, JOB_FAILED
from tests.fixtures import TENANT_ID, create_job


class TestConnectionHealth:
    def test_new_connection(self, client, connection, oauth_token):
        response = client.get(f"/connections/{connection.id}/health")

        assert response.status_code == 200
        data = response.json()
        assert data["connection_id"] == connection.id
        assert data["score"] == 1.0
        assert data["status"] == "excellent"
        assert data["token_status"] == "valid"
        assert data["freshness"] == "never"
        assert data["rate_limit_status"] == "unknown"
        assert data["job_counts"]["total"] == 0

    def test_after_failures(self, client, db, connection):
        now = datetime.now(timezone.utc)
        for hours in range(3):
            create_job(db, connection, JOB_FAILED, now - timedelta(hours=hours + 1))
        create_job(db, connection, JOB_COMPLETED, now - timedelta(days=10))

        data = client.get(f"/connections/{connection.id}/health").json()

        assert data["job_counts"][JOB_FAILED] == 3
        assert data["job_counts"][JOB_COMPLETED] == 1
        assert data["score"] < 0.5
        assert data["token_status"] == "missing"

    def test_after_sync(self, client, connection, oauth_token):
        client.post(
            "/connections/xero/sync",
            json={"connectionId": connection.id, "tenantId": TENANT_ID},
        )
        data = client.get(f"/connections/{connection.id}/health").json()
        assert data["freshness"] == "fresh"
        assert data["job_counts"][JOB_COMPLETED] == 1
        assert data["last_successful_sync_at"] is not None

    def test_unknown_connection(self, client):
        response = client.get("/connections/missing/health")
        assert response.status_code == 404
        assert response.json() == {"detail": "Connection not found"}


class TestIngestionJobs:
    def make_jobs(self, db, connection, count):
        now = datetime.now(timezone.utc)
        jobs = []
        for i in range(count):
            job = create_job(db, connection, JOB_COMPLETED, now - timedelta(hours=i + 1))
            job.created_at = now - timedelta(hours=i + 1)
            jobs.append(job)
        db.commit()
        return jobs

    def test_newest_first(self, client, db, connection):
        jobs = self.make_jobs(db, connection, 3)

        response = client.get(f"/connections/{connection.id}/jobs", params={"tenant_id": TENANT_ID})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [j["id"] for j in data["jobs"]] == [j.id for j in jobs]
        assert data["jobs"][0]["status"] == JOB_COMPLETED

    def test_capped_at_fifty(self, client, db, connection):
        self.make_jobs(db, connection, 55)
        data = client.get(
            f"/connections/{connection.id}/jobs", params={"tenant_id": TENANT_ID}
        ).json()
        assert len(data["jobs"]) == 50

    def test_single_job(self, client, db, connection):
        jobs = self.make_jobs(db, connection, 3)

        data = client.get(
            f"/connections/{connection.id}/jobs",
            params={"tenant_id": TENANT_ID, "job_id": jobs[1].id},
        ).json()

        assert [j["id"] for j in data["jobs"]] == [jobs[1].id]

    def test_other_tenant_sees_nothing(self, client, db, connection):
        self.make_jobs(db, connection, 2)
        data = client.get(
            f"/connections/{connection.id}/jobs", params={"tenant_id": "other-tenant"}
        ).json()
        assert data == {"success": True, "jobs": []}

    def test_tenant_required(self, client, connection):
        response = client.get(f"/connections/{connection.id}/jobs")
        assert response.status_code == 422

    def test_sync_job_listed_with_summary(self, client, connection, oauth_token):
        sync = client.post(
            "/connections/xero/sync",
            json={"connectionId": connection.id, "tenantId": TENANT_ID},
        ).json()

        data = client.get(
            f"/connections/{connection.id}/jobs",
            params={"tenant_id": TENANT_ID, "job_id": sync["jobId"]},
        ).json()

        (job,) = data["jobs"]
        assert job["status"] == JOB_COMPLETED
        assert job["summary"]["transactions_synced"] == 8
        assert job["completed_at"] is not None


class TestObservability:
    def test_dashboard_after_failed_sync(self, client, connection):
        client.post(
            "/connections/xero/sync",
            json={"connectionId": connection.id, "tenantId": TENANT_ID},
        )

        response = client.get(f"/connections/{connection.id}/observability")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["sync_success_rate"] == 0.0
        assert data["recent_activity"]["syncs"] == 1
        assert data["performance"]["period"] == "day"
        (error,) = data["recent_errors"]
        assert error["error_type"] == "auth_error"
        assert error["context"] == {"stage": "token"}

    def test_errors_endpoint(self, client, connection):
        for _ in range(3):
            client.post(
                "/connections/xero/sync",
                json={"connectionId": connection.id, "tenantId": TENANT_ID},
            )

        response = client.get(f"/connections/{connection.id}/errors", params={"limit": 2})

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_performance_period(self, client, connection):
        response = client.get(
            f"/connections/{connection.id}/performance", params={"period": "week"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["period"] == "week"
        assert data["api_calls_total"] == 0
        assert data["sync_success_rate"] == 1.0

    def test_invalid_period(self, client, connection):
        response = client.get(
            f"/connections/{connection.id}/performance", params={"period": "month"}
        )
        assert response.status_code == 422

    def test_unknown_connection(self, client):
        for path in ("observability", "errors", "performance"):
            response = client.get(f"/connections/missing/{path}")
            assert response.status_code == 404
