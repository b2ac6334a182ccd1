"""Pydantic schemas for connection health."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HealthReportResponse(BaseModel):
    """Response schema for ``GET /connections/{connection_id}/health``."""

    connection_id: str
    score: float
    status: str
    recommendation: str
    connection_status: str
    consecutive_failures: int
    token_status: str
    rate_limit_status: str
    freshness: str
    last_successful_sync_at: Optional[datetime] = None
    job_counts: dict[str, int] = {}
    rate_limit: dict = {}

    model_config = {"from_attributes": True}
