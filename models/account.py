"""Account model - canonical bank account fed by a provider connection."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Account(Base):
    """Normalized account exposed to the rest of the platform.

    The combination of connection_id + provider_id + external_account_id
    uniquely identifies an account. Accounts that disappear from a
    provider listing are marked ``closed``, never deleted.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint(
            "connection_id", "provider_id", "external_account_id",
            name="uix_account_connection_provider_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    provider_id = Column(String, nullable=False)
    external_account_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="other")
    currency = Column(String(3), nullable=False, default="USD")
    balance = Column(Numeric(18, 2), nullable=True)
    balance_date = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="active")  # active | inactive | closed
    sync_enabled = Column(Boolean, nullable=False, default=True)
    provider_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Sync tracking (per-account)
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success" | "partial" | "failed"
    last_sync_error = Column(String(500), nullable=True)

    connection = relationship("Connection", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")
