"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from api.oauth import get_oauth_service
from api.providers import get_registry as get_registry_for_providers
from api.sync import get_sync_service as get_sync_service_for_sync
from api.webhooks import get_session_factory, get_webhook_service
from services.oauth_service import OAuthService
from services.sync_service import SyncService
from services.webhook_service import WebhookService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    connection,
    oauth_token,
)
from tests.fixtures.mocks import (
    MockBankingProvider,
    MockProviderRegistry,
    SAMPLE_ACCOUNTS,
    SAMPLE_TRANSACTIONS,
)

WEBHOOK_KEY = "test-webhook-key"


@pytest.fixture(name="session_factory")
def session_factory_fixture():
    """Sessionmaker bound to a shared in-memory SQLite database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="mock_provider")
def mock_provider_fixture():
    """A Xero-like mock provider with two accounts and a few transactions."""
    return MockBankingProvider(
        provider_id="xero",
        accounts=list(SAMPLE_ACCOUNTS),
        transactions=dict(SAMPLE_TRANSACTIONS),
    )


@pytest.fixture(name="mock_provider_registry")
def mock_provider_registry_fixture(mock_provider):
    """Create a mock provider registry with the mock provider registered as xero."""
    return MockProviderRegistry({"xero": mock_provider, "tink": MockBankingProvider("tink")})


@pytest.fixture(name="client")
def client_fixture(db, session_factory, mock_provider_registry):
    """Create a test client with the test database and mock providers."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    sync_service = SyncService(provider_registry=mock_provider_registry)

    def override_get_sync_service():
        return sync_service

    def override_get_registry():
        return mock_provider_registry

    def override_get_oauth_service():
        return OAuthService(provider_registry=mock_provider_registry)

    def override_get_webhook_service():
        return WebhookService(webhook_key=WEBHOOK_KEY, sync_service=sync_service)

    def override_get_session_factory():
        return session_factory

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service_for_sync] = override_get_sync_service
    app.dependency_overrides[get_registry_for_providers] = override_get_registry
    app.dependency_overrides[get_oauth_service] = override_get_oauth_service
    app.dependency_overrides[get_webhook_service] = override_get_webhook_service
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
