"""Tests for the OAuth authorization flow."""

from urllib.parse import parse_qs, urlparse

import pytest

from integrations.exceptions import ProviderAPIError, ProviderValidationError
from models import OAuthToken
from models.connection import ACTIVE, ERROR, PENDING
from services.oauth_service import OAuthFlowError, OAuthService
from tests.fixtures import create_connection, create_token


@pytest.fixture
def oauth_service(mock_provider_registry):
    return OAuthService(provider_registry=mock_provider_registry)


@pytest.fixture
def pending_connection(db):
    return create_connection(db, status=PENDING)


def begin(service, db, connection) -> str:
    url = service.begin_authorization(db, "xero", connection.id)
    return parse_qs(urlparse(url).query)["state"][0]


class TestBeginAuthorization:
    def test_stores_state_and_returns_url(self, db, oauth_service, pending_connection):
        state = begin(oauth_service, db, pending_connection)
        assert len(state) >= 40
        assert pending_connection.oauth_state == state

    def test_each_attempt_gets_new_state(self, db, oauth_service, pending_connection):
        first = begin(oauth_service, db, pending_connection)
        second = begin(oauth_service, db, pending_connection)
        assert first != second
        assert pending_connection.oauth_state == second

    def test_unknown_connection(self, db, oauth_service):
        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.begin_authorization(db, "xero", "missing")
        assert exc_info.value.code == "connection_not_found"

    def test_connection_of_other_provider(self, db, oauth_service, pending_connection):
        with pytest.raises(OAuthFlowError):
            oauth_service.begin_authorization(db, "tink", pending_connection.id)

    def test_unknown_provider(self, db, oauth_service, pending_connection):
        with pytest.raises(ValueError):
            oauth_service.begin_authorization(db, "plaid", pending_connection.id)


class TestCompleteAuthorization:
    def test_success_stores_token_and_activates(self, db, oauth_service, pending_connection):
        state = begin(oauth_service, db, pending_connection)

        result = oauth_service.complete_authorization(db, "xero", "code-1", state)
        db.commit()

        assert result.connection_id == pending_connection.id
        assert result.metadata == {"xero_tenant_id": "org-1"}
        token = db.query(OAuthToken).one()
        assert token.access_token == "access-code-1"
        assert token.refresh_token == "refresh-code-1"
        assert token.provider_metadata == {"xero_tenant_id": "org-1"}
        assert pending_connection.status == ACTIVE
        assert pending_connection.oauth_state is None

    def test_state_is_single_use(self, db, oauth_service, pending_connection):
        state = begin(oauth_service, db, pending_connection)
        oauth_service.complete_authorization(db, "xero", "code-1", state)
        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.complete_authorization(db, "xero", "code-1", state)
        assert exc_info.value.code == "invalid_state"

    def test_reauthorization_replaces_token(self, db, oauth_service):
        connection = create_connection(db, status=ERROR)
        create_token(db, connection)
        state = begin(oauth_service, db, connection)

        oauth_service.complete_authorization(db, "xero", "code-2", state)
        db.commit()

        assert db.query(OAuthToken).count() == 1
        assert db.query(OAuthToken).one().access_token == "access-code-2"
        assert connection.status == ACTIVE

    def test_unknown_state(self, db, oauth_service, pending_connection):
        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.complete_authorization(db, "xero", "code-1", "forged")
        assert exc_info.value.code == "invalid_state"
        assert pending_connection.status == PENDING

    def test_user_declined(self, db, oauth_service, pending_connection):
        state = begin(oauth_service, db, pending_connection)
        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.complete_authorization(db, "xero", None, state, error="access_denied")
        assert exc_info.value.code == "access_denied"
        assert pending_connection.status == ERROR
        assert "declined" in pending_connection.last_error

    def test_missing_code(self, db, oauth_service, pending_connection):
        state = begin(oauth_service, db, pending_connection)
        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.complete_authorization(db, "xero", None, state)
        assert exc_info.value.code == "invalid_request"

    def test_exchange_failure_marks_connection(self, db, oauth_service, pending_connection, mock_provider):
        mock_provider.exchange_error = ProviderValidationError(
            "invalid code", "xero", status_code=400, error_code="invalid_grant"
        )
        state = begin(oauth_service, db, pending_connection)

        with pytest.raises(OAuthFlowError) as exc_info:
            oauth_service.complete_authorization(db, "xero", "bad", state)

        assert exc_info.value.code == "token_exchange_failed"
        assert pending_connection.status == ERROR
        assert pending_connection.last_error == "invalid code"
        assert db.query(OAuthToken).count() == 0

    def test_identity_failure_does_not_block(self, db, oauth_service, pending_connection, mock_provider):
        def broken_user_info(token):
            raise ProviderAPIError("connections endpoint down", "xero", status_code=503)

        mock_provider.fetch_user_info = broken_user_info
        state = begin(oauth_service, db, pending_connection)

        result = oauth_service.complete_authorization(db, "xero", "code-1", state)

        assert result.metadata == {}
        assert pending_connection.status == ACTIVE
