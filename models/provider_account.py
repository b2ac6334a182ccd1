"""RawProviderAccount model - an account exactly as a provider reported it."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid


class RawProviderAccount(Base):
    """Provider-shaped account record, linked to its canonical Account."""

    __tablename__ = "provider_accounts"
    __table_args__ = (
        UniqueConstraint(
            "connection_id", "provider_id", "external_account_id",
            name="uix_provider_account_connection_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    provider_id = Column(String, nullable=False)
    external_account_id = Column(String, nullable=False)
    account_name = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=True)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)
    last_sync_error = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
