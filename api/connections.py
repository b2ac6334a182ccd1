"""Connection health, job history and observability API endpoints."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Connection, IngestionJob
from schemas.health import HealthReportResponse
from schemas.observability import (
    IngestionJobListResponse,
    ObservabilityDashboardResponse,
    PerformanceMetricsResponse,
    ProviderErrorResponse,
)
from services.health_service import HealthService
from services.observability_service import RECENT_ERRORS_LIMIT, ObservabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])

JOB_HISTORY_LIMIT = 50


@router.get("/{connection_id}/health", response_model=HealthReportResponse)
def get_connection_health(connection_id: str, db: Session = Depends(get_db)):
    """Health score, status band and supporting signals for a connection."""
    connection = get_or_404(db, Connection, connection_id, detail="Connection not found")
    return HealthService().get_health_report(db, connection)


@router.get("/{connection_id}/jobs", response_model=IngestionJobListResponse)
def list_ingestion_jobs(
    connection_id: str,
    tenant_id: str = Query(...),
    job_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Ingestion jobs of a tenant's connection, newest first.

    With ``job_id`` only that job is returned. Unknown connections yield an
    empty list.
    """
    query = db.query(IngestionJob).filter(
        IngestionJob.connection_id == connection_id,
        IngestionJob.tenant_id == tenant_id,
    )
    if job_id:
        query = query.filter(IngestionJob.id == job_id)
    jobs = (
        query.order_by(IngestionJob.created_at.desc())
        .limit(1 if job_id else JOB_HISTORY_LIMIT)
        .all()
    )
    return {"success": True, "jobs": jobs}


@router.get("/{connection_id}/errors", response_model=list[ProviderErrorResponse])
def list_provider_errors(
    connection_id: str,
    limit: int = Query(RECENT_ERRORS_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Most recent provider errors logged for a connection."""
    get_or_404(db, Connection, connection_id, detail="Connection not found")
    return ObservabilityService().get_recent_errors(db, connection_id, limit)


@router.get("/{connection_id}/performance", response_model=PerformanceMetricsResponse)
def get_performance_metrics(
    connection_id: str,
    period: Literal["hour", "day", "week"] = "day",
    db: Session = Depends(get_db),
):
    """API latency, call outcomes and sync outcomes over a period."""
    get_or_404(db, Connection, connection_id, detail="Connection not found")
    return ObservabilityService().get_performance_metrics(db, connection_id, period)


@router.get("/{connection_id}/observability", response_model=ObservabilityDashboardResponse)
def get_observability_dashboard(connection_id: str, db: Session = Depends(get_db)):
    """Last-day performance, recent errors and an overall status for a connection."""
    connection = get_or_404(db, Connection, connection_id, detail="Connection not found")
    return ObservabilityService().get_dashboard(db, connection)
