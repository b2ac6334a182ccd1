"""Connection health scoring and status transitions.

The health score is derived from the last 30 days of ingestion jobs:

    score = 0.7 * recent_completed_rate + 0.3 * historical_completed_rate
            - 0.05 * failures among the 5 most recent jobs of the last 7 days

clamped to [0, 1] and rounded to two decimals. A connection with no jobs
scores 1.0. Three consecutive failures flip the connection to ``error``;
the next success flips it back to ``active``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from integrations.parsing_utils import ensure_utc
from models import Connection, IngestionJob, OAuthToken
from models.connection import ACTIVE, ERROR
from models.ingestion_job import (
    JOB_COMPLETED,
    JOB_COMPLETED_WITH_ERRORS,
    JOB_FAILED,
)
from models.oauth_token import TOKEN_ACTIVE

logger = logging.getLogger(__name__)

HEALTH_WINDOW = timedelta(days=30)
RECENT_WINDOW = timedelta(days=7)
RECENT_WEIGHT = 0.7
HISTORICAL_WEIGHT = 0.3
FAILURE_PENALTY = 0.05
PENALTY_LOOKBACK_JOBS = 5
FAILURE_THRESHOLD = 3

# (minimum score, status, recommendation)
HEALTH_BANDS = [
    (0.9, "excellent", "Connection is healthy. No action needed."),
    (0.75, "good", "Connection is mostly healthy. Occasional sync issues detected."),
    (0.5, "fair", "Connection has intermittent failures. Review recent sync errors."),
    (0.25, "poor", "Connection is failing frequently. Consider reconnecting."),
    (0.0, "critical", "Connection is failing. Reconnect the account to restore syncing."),
]

EXPIRING_SOON = timedelta(hours=1)
FRESH_WITHIN = timedelta(hours=24)
STALE_WITHIN = timedelta(hours=72)
RATE_LIMIT_CRITICAL = 10
RATE_LIMIT_WARNING = 50


@dataclass
class HealthReport:
    """Snapshot of a connection's health for display and alerting."""

    connection_id: str
    score: float
    status: str
    recommendation: str
    connection_status: str
    consecutive_failures: int
    token_status: str
    rate_limit_status: str
    freshness: str
    last_successful_sync_at: datetime | None = None
    job_counts: dict[str, int] = field(default_factory=dict)
    rate_limit: dict = field(default_factory=dict)


def health_band(score: float) -> tuple[str, str]:
    """Return (status, recommendation) for a score."""
    for minimum, status, recommendation in HEALTH_BANDS:
        if score >= minimum:
            return status, recommendation
    return HEALTH_BANDS[-1][1], HEALTH_BANDS[-1][2]


def score_jobs(jobs: list[IngestionJob], now: datetime) -> float:
    """Compute the health score from job outcomes.

    Args:
        jobs: Jobs from the last 30 days, any order.
        now: Reference time.
    """
    if not jobs:
        return 1.0

    recent_cutoff = now - RECENT_WINDOW
    recent = []
    historical = []
    for job in jobs:
        started = ensure_utc(job.started_at or job.created_at)
        (recent if started >= recent_cutoff else historical).append((started, job))

    def completed_rate(bucket) -> float:
        if not bucket:
            return 1.0
        completed = sum(1 for _, job in bucket if job.status == JOB_COMPLETED)
        return completed / len(bucket)

    # An empty bucket counts as fully healthy
    score = RECENT_WEIGHT * completed_rate(recent) + HISTORICAL_WEIGHT * completed_rate(historical)

    latest = sorted(recent, key=lambda pair: pair[0], reverse=True)[:PENALTY_LOOKBACK_JOBS]
    failures = sum(1 for _, job in latest if job.status == JOB_FAILED)
    score -= FAILURE_PENALTY * failures

    return round(min(max(score, 0.0), 1.0), 2)


class HealthService:
    """Service for connection health tracking."""

    @staticmethod
    def _jobs_in_window(db: Session, connection_id: str, now: datetime) -> list[IngestionJob]:
        cutoff = now - HEALTH_WINDOW
        jobs = (
            db.query(IngestionJob)
            .filter(
                IngestionJob.connection_id == connection_id,
                IngestionJob.completed_at.isnot(None),
            )
            .all()
        )
        # SQLite returns naive datetimes, so the window is applied in Python
        return [j for j in jobs if ensure_utc(j.started_at or j.created_at) >= cutoff]

    def calculate_health_score(
        self, db: Session, connection_id: str, now: datetime | None = None
    ) -> float:
        """Recompute the 0..1 health score for a connection."""
        now = now or datetime.now(timezone.utc)
        return score_jobs(self._jobs_in_window(db, connection_id, now), now)

    def record_sync_success(self, db: Session, connection: Connection) -> None:
        """Reset the failure counter and reactivate the connection."""
        now = datetime.now(timezone.utc)
        if connection.status == ERROR:
            logger.info("Connection %s recovered, status -> active", connection.id)
        connection.consecutive_failures = 0
        connection.status = ACTIVE
        connection.last_error = None
        connection.last_successful_sync_at = now
        db.flush()
        connection.health_score = self.calculate_health_score(db, connection.id, now)
        db.flush()

    def record_sync_failure(self, db: Session, connection: Connection, error_message: str) -> None:
        """Increment the failure counter, flipping to ``error`` at the threshold."""
        connection.consecutive_failures = (connection.consecutive_failures or 0) + 1
        connection.last_error = error_message[:1000] if error_message else None
        if connection.consecutive_failures >= FAILURE_THRESHOLD and connection.status != ERROR:
            connection.status = ERROR
            logger.warning(
                "Connection %s marked as error after %d consecutive failures",
                connection.id, connection.consecutive_failures,
            )
        db.flush()
        connection.health_score = self.calculate_health_score(db, connection.id)
        db.flush()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_health_report(
        self, db: Session, connection: Connection, now: datetime | None = None
    ) -> HealthReport:
        """Build the full health report for a connection."""
        now = now or datetime.now(timezone.utc)
        jobs = self._jobs_in_window(db, connection.id, now)
        score = score_jobs(jobs, now)
        status, recommendation = health_band(score)

        token = (
            db.query(OAuthToken)
            .filter_by(connection_id=connection.id, provider_id=connection.provider_id)
            .first()
        )
        rate_limit = (connection.provider_metadata or {}).get("rate_limit") or {}

        return HealthReport(
            connection_id=connection.id,
            score=score,
            status=status,
            recommendation=recommendation,
            connection_status=connection.status,
            consecutive_failures=connection.consecutive_failures or 0,
            token_status=self.token_status(token, now),
            rate_limit_status=self.rate_limit_status(rate_limit),
            freshness=self.freshness(connection.last_successful_sync_at, now),
            last_successful_sync_at=connection.last_successful_sync_at,
            job_counts={
                "total": len(jobs),
                JOB_COMPLETED: sum(1 for j in jobs if j.status == JOB_COMPLETED),
                JOB_COMPLETED_WITH_ERRORS: sum(
                    1 for j in jobs if j.status == JOB_COMPLETED_WITH_ERRORS
                ),
                JOB_FAILED: sum(1 for j in jobs if j.status == JOB_FAILED),
            },
            rate_limit=rate_limit,
        )

    @staticmethod
    def token_status(token: OAuthToken | None, now: datetime) -> str:
        if token is None or token.status != TOKEN_ACTIVE:
            return "missing" if token is None else "expired"
        if token.expires_at is None:
            return "valid"
        remaining = ensure_utc(token.expires_at) - now
        if remaining <= timedelta(0):
            # A refresh token means the next sync can recover on its own
            return "expiring_soon" if token.refresh_token else "expired"
        if remaining <= EXPIRING_SOON:
            return "expiring_soon"
        return "valid"

    @staticmethod
    def rate_limit_status(rate_limit: dict) -> str:
        remaining = [
            v for k, v in rate_limit.items()
            if k.endswith("_remaining") and isinstance(v, int)
        ]
        if not remaining:
            return "unknown"
        lowest = min(remaining)
        if lowest < RATE_LIMIT_CRITICAL:
            return "critical"
        if lowest < RATE_LIMIT_WARNING:
            return "warning"
        return "ok"

    @staticmethod
    def freshness(last_successful_sync_at: datetime | None, now: datetime) -> str:
        if last_successful_sync_at is None:
            return "never"
        age = now - ensure_utc(last_successful_sync_at)
        if age <= FRESH_WITHIN:
            return "fresh"
        if age <= STALE_WITHIN:
            return "stale"
        return "very_stale"
