"""Integration tests for the sync trigger endpoint."""

from models import IngestionJob, Transaction
from models.ingestion_job import JOB_COMPLETED, JOB_COMPLETED_WITH_ERRORS, JOB_FAILED
from integrations.exceptions import ProviderAPIError, ProviderConnectionError
from services.sync_service import SyncService
from tests.fixtures import TENANT_ID, create_connection


def sync_body(connection, **extra) -> dict:
    return {"connectionId": connection.id, "tenantId": TENANT_ID, **extra}


class TestTriggerSync:
    def test_successful_sync(self, client, db, connection, oauth_token):
        response = client.post("/connections/xero/sync", json=sync_body(connection))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == JOB_COMPLETED
        assert data["message"] == "Sync completed successfully"
        assert data["summary"]["accountsSynced"] == 2
        assert data["summary"]["accountsCreated"] == 2
        assert data["summary"]["transactionsSynced"] == 8
        assert data["summary"]["errors"] is None
        assert "syncDurationMs" in data["summary"]
        assert db.get(IngestionJob, data["jobId"]).status == JOB_COMPLETED
        assert db.query(Transaction).count() == 8

    def test_options_forwarded(self, client, connection, oauth_token, mock_provider):
        response = client.post(
            "/connections/xero/sync",
            json=sync_body(
                connection,
                syncTransactions=False,
            ),
        )
        assert response.status_code == 200
        assert mock_provider.fetch_accounts_calls == 1
        assert mock_provider.transaction_calls == []

    def test_transaction_limit_capped(self, client, connection, oauth_token, mock_provider):
        client.post("/connections/xero/sync", json=sync_body(connection, transactionLimit=5000))
        _, options = mock_provider.transaction_calls[0]
        assert options.page_size == 500

    def test_second_sync_reports_skips(self, client, connection, oauth_token):
        client.post("/connections/xero/sync", json=sync_body(connection))
        response = client.post("/connections/xero/sync", json=sync_body(connection))

        warnings = response.json()["summary"]["warnings"]
        assert "Business Cheque: Skipped (synced recently)" in warnings

    def test_partial_failure_is_200(self, client, connection, oauth_token, mock_provider):
        mock_provider.transaction_errors = {
            "acc-001": ProviderAPIError("Upstream error", "xero", status_code=500)
        }
        response = client.post("/connections/xero/sync", json=sync_body(connection))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == JOB_COMPLETED_WITH_ERRORS
        assert data["summary"]["errors"] == ["Business Cheque: Upstream error"]

    def test_fatal_provider_error_is_sealed_failed(self, client, connection, oauth_token, mock_provider):
        mock_provider.accounts_error = ProviderAPIError("Not found", "xero", status_code=404)
        response = client.post("/connections/xero/sync", json=sync_body(connection))

        assert response.status_code == 200
        assert response.json()["status"] == JOB_FAILED
        assert response.json()["success"] is False


class TestSyncErrors:
    def test_unknown_provider(self, client, connection):
        response = client.post("/connections/plaid/sync", json=sync_body(connection))
        assert response.status_code == 400
        assert response.json() == {"error": "Unknown provider: plaid"}

    def test_unconfigured_provider(self, client, db, mock_provider_registry):
        mock_provider_registry._providers["tink"].configured = False
        connection = create_connection(db, provider_id="tink")
        response = client.post("/connections/tink/sync", json=sync_body(connection))
        assert response.status_code == 400
        assert "not available" in response.json()["error"]

    def test_connection_not_found(self, client):
        response = client.post(
            "/connections/xero/sync", json={"connectionId": "missing", "tenantId": TENANT_ID}
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Connection not found"}

    def test_wrong_provider_is_not_found(self, client, connection):
        response = client.post("/connections/tink/sync", json=sync_body(connection))
        assert response.status_code == 404

    def test_sync_in_progress(self, client, connection, oauth_token):
        lock = SyncService._connection_lock(connection.id)
        lock.acquire()
        try:
            response = client.post("/connections/xero/sync", json=sync_body(connection))
        finally:
            lock.release()
        assert response.status_code == 409
        assert "already in progress" in response.json()["error"]

    def test_missing_token_requires_reconnect(self, client, connection):
        response = client.post("/connections/xero/sync", json=sync_body(connection))
        assert response.status_code == 401
        assert "reconnect" in response.json()["error"]

    def test_provider_unavailable(self, client, connection, oauth_token, mock_provider):
        mock_provider.accounts_error = ProviderConnectionError("timeout", "xero")
        response = client.post("/connections/xero/sync", json=sync_body(connection))
        assert response.status_code == 502

    def test_unexpected_error_hides_details(self, client, connection, oauth_token, mock_provider):
        mock_provider.accounts_error = RuntimeError("secret internals")
        response = client.post("/connections/xero/sync", json=sync_body(connection))
        assert response.status_code == 500
        assert "secret internals" not in response.text

    def test_missing_fields_rejected(self, client):
        response = client.post("/connections/xero/sync", json={"tenantId": TENANT_ID})
        assert response.status_code == 422

    def test_inverted_date_range_rejected(self, client, connection):
        response = client.post(
            "/connections/xero/sync",
            json=sync_body(
                connection,
                transactionStartDate="2024-03-01T00:00:00Z",
                transactionEndDate="2024-01-01T00:00:00Z",
            ),
        )
        assert response.status_code == 422
