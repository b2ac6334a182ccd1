"""Pydantic schemas for ingestion jobs and provider call observability."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class IngestionJobResponse(BaseModel):
    id: str
    tenant_id: str
    connection_id: str
    job_type: str
    status: str
    records_fetched: int
    records_imported: int
    records_failed: int
    summary: Optional[dict] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class IngestionJobListResponse(BaseModel):
    """Response schema for ``GET /connections/{connection_id}/jobs``."""

    success: bool = True
    jobs: list[IngestionJobResponse]


class ProviderErrorResponse(BaseModel):
    id: str
    job_id: Optional[str] = None
    error_type: str
    error_code: Optional[str] = None
    error_message: str
    context: Optional[dict] = None
    resolved: bool
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PerformanceMetricsResponse(BaseModel):
    connection_id: str
    period: str
    api_calls_total: int
    api_calls_successful: int
    api_calls_failed: int
    api_error_rate: float
    average_latency_ms: float
    p95_latency_ms: int
    p99_latency_ms: int
    sync_count: int
    sync_success_rate: float
    accounts_synced: int
    transactions_synced: int

    model_config = {"from_attributes": True}


class ObservabilityDashboardResponse(BaseModel):
    """Response schema for ``GET /connections/{connection_id}/observability``."""

    connection_id: str
    status: str
    last_sync_at: Optional[datetime] = None
    sync_success_rate: float
    api_error_rate: float
    recent_activity: dict[str, int]
    performance: PerformanceMetricsResponse
    recent_errors: list[ProviderErrorResponse] = []

    model_config = {"from_attributes": True}
