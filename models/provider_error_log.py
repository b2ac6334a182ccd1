"""ProviderErrorLog model - errors raised while syncing a connection."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text

from database import Base
from models.utils import generate_uuid

# error_type values
API_ERROR = "api_error"
AUTH_ERROR = "auth_error"
RATE_LIMIT = "rate_limit"
VALIDATION = "validation"
NETWORK = "network"
DATA_ERROR = "data_error"
UNKNOWN = "unknown"


class ProviderErrorLog(Base):
    """An error seen during a sync attempt.

    Errors stay unresolved until a later sync of the connection completes
    cleanly.
    """

    __tablename__ = "provider_error_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=False)
    provider_id = Column(String, nullable=False)
    job_id = Column(String(36), nullable=True)
    error_type = Column(String(30), nullable=False, default=UNKNOWN)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=False)
    context = Column(JSON, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )
