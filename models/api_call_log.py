"""ApiCallLog model - one row per HTTP attempt made against a provider."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from database import Base
from models.utils import generate_uuid


class ApiCallLog(Base):
    """A single provider API request, including retried attempts."""

    __tablename__ = "api_call_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=False)
    provider_id = Column(String, nullable=False)
    job_id = Column(String(36), nullable=True)
    method = Column(String(10), nullable=False)
    endpoint = Column(String(500), nullable=False)  # path only, never the query string
    status_code = Column(Integer, nullable=True)  # None when the request never got a response
    duration_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    rate_limit_remaining = Column(Integer, nullable=True)
    created_at = Column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )
