"""Transaction model - canonical bank transaction."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Transaction(Base):
    """A normalized transaction.

    Amount is signed: credits positive, debits negative. The tuple
    (connection_id, provider_id, external_transaction_id) is unique, and
    every write is an upsert on it, so replays never duplicate rows.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "connection_id", "provider_id", "external_transaction_id",
            name="uix_transaction_connection_provider_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_id = Column(String, nullable=False, index=True)  # {provider}_{connection}_{external}
    tenant_id = Column(String(36), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    provider_id = Column(String, nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    external_transaction_id = Column(String, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(Text, nullable=True)
    transaction_type = Column(String, nullable=False)  # "credit" | "debit"
    transaction_date = Column(DateTime, nullable=False)
    counterparty_name = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    category = Column(String, nullable=True)
    provider_metadata = Column(JSON, nullable=True)
    import_job_id = Column(String(36), ForeignKey("ingestion_jobs.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    account = relationship("Account", back_populates="transactions")
