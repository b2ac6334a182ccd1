"""IngestionJob model - one record per sync attempt."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_COMPLETED_WITH_ERRORS = "completed_with_errors"
JOB_FAILED = "failed"

FINAL_STATUSES = frozenset({JOB_COMPLETED, JOB_COMPLETED_WITH_ERRORS, JOB_FAILED})


class IngestionJob(Base):
    """A sync attempt: created when the sync starts, sealed when it ends.

    Once sealed (``completed_at`` set) the job is immutable; :meth:`seal`
    refuses to run twice.
    """

    __tablename__ = "ingestion_jobs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False, index=True)
    job_type = Column(String, nullable=False)  # e.g. "xero_sync"
    status = Column(String, nullable=False, default=JOB_PENDING)
    records_fetched = Column(Integer, nullable=False, default=0)
    records_imported = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    connection = relationship("Connection", back_populates="ingestion_jobs")

    @property
    def is_sealed(self) -> bool:
        return self.completed_at is not None

    def start(self) -> None:
        self.status = JOB_RUNNING
        self.started_at = datetime.now(timezone.utc)

    def seal(
        self,
        status: str,
        *,
        summary: dict | None = None,
        records_fetched: int = 0,
        records_imported: int = 0,
        records_failed: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Record the final outcome.

        Raises:
            ValueError: If the job is already sealed or the status is not final.
        """
        if self.is_sealed:
            raise ValueError(f"Ingestion job {self.id} is already sealed")
        if status not in FINAL_STATUSES:
            raise ValueError(f"Invalid final job status: {status}")
        self.status = status
        self.summary = summary
        self.records_fetched = records_fetched
        self.records_imported = records_imported
        self.records_failed = records_failed
        self.error_message = error_message
        self.completed_at = datetime.now(timezone.utc)
