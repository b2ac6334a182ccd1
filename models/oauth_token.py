"""OAuthToken model - provider token set for one connection."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

TOKEN_ACTIVE = "active"
TOKEN_EXPIRED = "expired"
TOKEN_REVOKED = "revoked"


class OAuthToken(Base):
    """OAuth tokens for a (connection, provider) pair.

    The unique constraint keeps a single row per pair, so there is never
    more than one ``active`` token. Re-authorization updates the row in place.
    """

    __tablename__ = "provider_tokens"
    __table_args__ = (
        UniqueConstraint("connection_id", "provider_id", name="uix_token_connection_provider"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    provider_id = Column(String, nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_type = Column(String, nullable=False, default="Bearer")
    expires_at = Column(DateTime, nullable=True)
    scopes = Column(JSON, nullable=True)
    provider_metadata = Column(JSON, nullable=True)  # e.g. {"xero_tenant_id": ...}
    status = Column(String, nullable=False, default=TOKEN_ACTIVE)  # active | expired | revoked
    last_used_at = Column(DateTime, nullable=True)
    last_refreshed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    connection = relationship("Connection", back_populates="tokens")

    def __repr__(self) -> str:
        # Never include token values
        return f"<OAuthToken connection={self.connection_id} provider={self.provider_id} status={self.status}>"
