"""Connection model - a tenant's authorized link to one provider."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

ACTIVE = "active"
ERROR = "error"
DISABLED = "disabled"
PENDING = "pending"


class Connection(Base):
    """A tenant's connection to one provider instance.

    Status, failure counter and health score are maintained by the health
    service after every sync attempt. The engine never deletes connections.
    """

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String, nullable=False)  # e.g. "xero", "tink"
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default=PENDING)  # active | error | disabled | pending
    consecutive_failures = Column(Integer, nullable=False, default=0)
    health_score = Column(Float, nullable=False, default=1.0)
    last_sync_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    last_successful_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    last_sync_summary = Column(JSON, nullable=True)
    oauth_state = Column(String, nullable=True, index=True)
    provider_metadata = Column(JSON, nullable=True)  # e.g. last rate-limit headers
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tokens = relationship("OAuthToken", back_populates="connection")
    accounts = relationship("Account", back_populates="connection")
    ingestion_jobs = relationship("IngestionJob", back_populates="connection")
