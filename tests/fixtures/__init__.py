"""Test fixtures and sample data."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from models import Account, Connection, IngestionJob, OAuthToken
from models.connection import ACTIVE
from models.oauth_token import TOKEN_ACTIVE

TENANT_ID = "tenant-1"


def create_connection(
    db: Session,
    provider_id: str = "xero",
    tenant_id: str = TENANT_ID,
    status: str = ACTIVE,
    **kwargs,
) -> Connection:
    connection = Connection(
        tenant_id=tenant_id,
        provider_id=provider_id,
        name=kwargs.pop("name", f"{provider_id} connection"),
        status=status,
        **kwargs,
    )
    db.add(connection)
    db.commit()
    return connection


def create_token(
    db: Session,
    connection: Connection,
    expires_in: timedelta | None = timedelta(hours=1),
    refresh_token: str | None = "refresh-1",
    status: str = TOKEN_ACTIVE,
    metadata: dict | None = None,
) -> OAuthToken:
    token = OAuthToken(
        connection_id=connection.id,
        provider_id=connection.provider_id,
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=(datetime.now(timezone.utc) + expires_in) if expires_in is not None else None,
        status=status,
        provider_metadata=metadata if metadata is not None else {"xero_tenant_id": "org-1"},
    )
    db.add(token)
    db.commit()
    return token


def create_account(
    db: Session,
    connection: Connection,
    external_account_id: str = "acc-001",
    **kwargs,
) -> Account:
    account = Account(
        tenant_id=connection.tenant_id,
        connection_id=connection.id,
        provider_id=connection.provider_id,
        external_account_id=external_account_id,
        name=kwargs.pop("name", f"Account {external_account_id}"),
        currency=kwargs.pop("currency", "GBP"),
        **kwargs,
    )
    db.add(account)
    db.commit()
    return account


def create_job(
    db: Session,
    connection: Connection,
    status: str,
    started_at: datetime,
) -> IngestionJob:
    """A sealed job with explicit timestamps, for health scoring."""
    job = IngestionJob(
        tenant_id=connection.tenant_id,
        connection_id=connection.id,
        job_type=f"{connection.provider_id}_sync",
        status=status,
        started_at=started_at,
        completed_at=started_at + timedelta(seconds=5),
    )
    db.add(job)
    db.commit()
    return job


@pytest.fixture
def connection(db):
    return create_connection(db)


@pytest.fixture
def oauth_token(db, connection):
    return create_token(db, connection)
