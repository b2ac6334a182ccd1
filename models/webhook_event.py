"""WebhookEvent model - audit trail of provider webhook deliveries."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text

from database import Base
from models.utils import generate_uuid


class WebhookEvent(Base):
    """A single event received from a provider webhook."""

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider = Column(String, nullable=False)
    event_type = Column(String, nullable=False)  # CREATE | UPDATE | DELETE
    event_category = Column(String, nullable=True)  # BANKTRANSACTION, INVOICE, ...
    resource_id = Column(String, nullable=True)
    external_tenant_id = Column(String, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    raw_payload = Column(Text, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=True)
    tenant_id = Column(String(36), nullable=True)
    received_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
