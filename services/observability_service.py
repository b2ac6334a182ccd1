"""Provider API call and error logs, with the queries built on them.

Adapters report every HTTP attempt through ``ProviderCredentials.on_api_call``.
The sync service collects those reports in an :class:`ApiCallCollector` while
provider calls run on worker threads, then persists them here from its own
thread when the job is sealed.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from integrations.exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderError,
    ProviderRateLimitError,
    ProviderValidationError,
)
from integrations.http_client import ApiCall
from integrations.parsing_utils import ensure_utc
from models import ApiCallLog, Connection, IngestionJob, ProviderErrorLog
from models.ingestion_job import FINAL_STATUSES, JOB_COMPLETED
from models.provider_error_log import (
    API_ERROR,
    AUTH_ERROR,
    DATA_ERROR,
    NETWORK,
    RATE_LIMIT,
    UNKNOWN,
    VALIDATION,
)

logger = logging.getLogger(__name__)

PERIODS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
}

RECENT_ERRORS_LIMIT = 10
DASHBOARD_ERRORS_LIMIT = 5

# (minimum sync success rate, maximum API error rate) for each status
HEALTHY = (0.9, 0.1)
DEGRADED = (0.5, 0.3)


def classify_error(error: BaseException) -> str:
    """Map an exception to a stored ``error_type``."""
    if isinstance(error, ProviderAuthError):
        return AUTH_ERROR
    if isinstance(error, ProviderRateLimitError):
        return RATE_LIMIT
    if isinstance(error, ProviderValidationError):
        return VALIDATION
    if isinstance(error, ProviderConnectionError):
        return NETWORK
    if isinstance(error, ProviderDataError):
        return DATA_ERROR
    if isinstance(error, ProviderError):
        return API_ERROR
    return UNKNOWN


def percentile(sorted_values: list[int], fraction: float) -> int:
    """Nearest-rank percentile of an ascending list (0 when empty)."""
    if not sorted_values:
        return 0
    index = min(math.floor(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


class ApiCallCollector:
    """Thread-safe sink for the API calls of one sync attempt."""

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: list[ApiCall] = []

    def __call__(self, call: ApiCall) -> None:
        with self._lock:
            self._calls.append(call)

    def drain(self) -> list[ApiCall]:
        """Return everything collected so far and start empty."""
        with self._lock:
            calls, self._calls = self._calls, []
        return calls


@dataclass
class PerformanceMetrics:
    connection_id: str
    period: str
    api_calls_total: int = 0
    api_calls_successful: int = 0
    api_calls_failed: int = 0
    average_latency_ms: float = 0.0
    p95_latency_ms: int = 0
    p99_latency_ms: int = 0
    sync_count: int = 0
    sync_success_rate: float = 1.0
    accounts_synced: int = 0
    transactions_synced: int = 0

    @property
    def api_error_rate(self) -> float:
        return self.api_calls_failed / max(self.api_calls_total, 1)


@dataclass
class ObservabilityDashboard:
    connection_id: str
    status: str  # healthy | degraded | unhealthy
    last_sync_at: datetime | None
    sync_success_rate: float
    api_error_rate: float
    recent_activity: dict[str, int]
    performance: PerformanceMetrics
    recent_errors: list[ProviderErrorLog] = field(default_factory=list)


class ObservabilityService:
    """Service for provider call logs, error logs and performance queries."""

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @staticmethod
    def record_api_calls(
        db: Session,
        connection: Connection,
        calls: list[ApiCall],
        job_id: str | None = None,
    ) -> int:
        """Persist collected API calls for a connection."""
        for call in calls:
            db.add(ApiCallLog(
                connection_id=connection.id,
                tenant_id=connection.tenant_id,
                provider_id=connection.provider_id,
                job_id=job_id,
                method=call.method,
                endpoint=call.endpoint,
                status_code=call.status_code,
                duration_ms=call.duration_ms,
                success=call.success,
                error_message=call.error,
                rate_limit_remaining=call.rate_limit_remaining,
                created_at=call.at,
            ))
        db.flush()
        return len(calls)

    @staticmethod
    def log_error(
        db: Session,
        connection: Connection,
        error: BaseException,
        *,
        job_id: str | None = None,
        context: dict | None = None,
    ) -> ProviderErrorLog:
        """Store an error raised while syncing a connection."""
        entry = ProviderErrorLog(
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            provider_id=connection.provider_id,
            job_id=job_id,
            error_type=classify_error(error),
            error_code=getattr(error, "error_code", None)
            or (str(error.status_code) if getattr(error, "status_code", None) else None),
            error_message=str(error)[:2000] or type(error).__name__,
            context=context or {},
        )
        db.add(entry)
        db.flush()
        logger.info(
            "Logged %s for connection %s: %s",
            entry.error_type, connection.id, entry.error_message,
        )
        return entry

    @staticmethod
    def resolve_errors(db: Session, connection_id: str) -> int:
        """Mark all open errors of a connection resolved."""
        now = datetime.now(timezone.utc)
        open_errors = (
            db.query(ProviderErrorLog)
            .filter_by(connection_id=connection_id, resolved=False)
            .all()
        )
        for entry in open_errors:
            entry.resolved = True
            entry.resolved_at = now
        db.flush()
        return len(open_errors)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def get_recent_errors(
        db: Session, connection_id: str, limit: int = RECENT_ERRORS_LIMIT
    ) -> list[ProviderErrorLog]:
        return (
            db.query(ProviderErrorLog)
            .filter_by(connection_id=connection_id)
            .order_by(ProviderErrorLog.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_performance_metrics(
        self,
        db: Session,
        connection_id: str,
        period: str = "day",
        now: datetime | None = None,
    ) -> PerformanceMetrics:
        """API latency and outcome counts plus sync outcomes over a period.

        Raises:
            ValueError: If ``period`` is not hour, day or week.
        """
        if period not in PERIODS:
            raise ValueError(f"Unknown period: {period}")
        now = now or datetime.now(timezone.utc)
        cutoff = now - PERIODS[period]

        # SQLite returns naive datetimes, so the window is applied in Python
        calls = [
            c for c in db.query(ApiCallLog).filter_by(connection_id=connection_id).all()
            if ensure_utc(c.created_at) >= cutoff
        ]
        jobs = [
            j for j in db.query(IngestionJob).filter_by(connection_id=connection_id).all()
            if j.status in FINAL_STATUSES
            and ensure_utc(j.started_at or j.created_at) >= cutoff
        ]

        latencies = sorted(c.duration_ms for c in calls)
        successful = sum(1 for c in calls if c.success)
        completed = sum(1 for j in jobs if j.status == JOB_COMPLETED)
        return PerformanceMetrics(
            connection_id=connection_id,
            period=period,
            api_calls_total=len(calls),
            api_calls_successful=successful,
            api_calls_failed=len(calls) - successful,
            average_latency_ms=round(sum(latencies) / len(latencies), 1) if latencies else 0.0,
            p95_latency_ms=percentile(latencies, 0.95),
            p99_latency_ms=percentile(latencies, 0.99),
            sync_count=len(jobs),
            sync_success_rate=completed / len(jobs) if jobs else 1.0,
            accounts_synced=sum((j.summary or {}).get("accounts_synced", 0) for j in jobs),
            transactions_synced=sum(
                (j.summary or {}).get("transactions_synced", 0) for j in jobs
            ),
        )

    def get_dashboard(
        self, db: Session, connection: Connection, now: datetime | None = None
    ) -> ObservabilityDashboard:
        """Last-day performance, recent errors and an overall status."""
        performance = self.get_performance_metrics(db, connection.id, "day", now)
        recent_errors = self.get_recent_errors(db, connection.id, DASHBOARD_ERRORS_LIMIT)

        last_job = (
            db.query(IngestionJob)
            .filter(
                IngestionJob.connection_id == connection.id,
                IngestionJob.completed_at.isnot(None),
            )
            .order_by(IngestionJob.completed_at.desc())
            .first()
        )

        success_rate = performance.sync_success_rate
        error_rate = performance.api_error_rate
        if success_rate >= HEALTHY[0] and error_rate <= HEALTHY[1]:
            status = "healthy"
        elif success_rate >= DEGRADED[0] and error_rate <= DEGRADED[1]:
            status = "degraded"
        else:
            status = "unhealthy"

        return ObservabilityDashboard(
            connection_id=connection.id,
            status=status,
            last_sync_at=last_job.completed_at if last_job else None,
            sync_success_rate=round(success_rate, 2),
            api_error_rate=round(error_rate, 2),
            recent_activity={
                "syncs": performance.sync_count,
                "api_calls": performance.api_calls_total,
                "errors": len(recent_errors),
            },
            performance=performance,
            recent_errors=recent_errors,
        )
