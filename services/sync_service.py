"""Sync service - orchestrates one sync attempt for a provider connection."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import (
    ConnectionNotFoundError,
    ErrorDisposition,
    ProviderError,
    SyncInProgressError,
)
from integrations.provider_protocol import (
    BankingProvider,
    FetchOptions,
    ProviderCredentials,
    ProviderTransaction,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from models import Account, Connection, IngestionJob, RawProviderAccount
from models.ingestion_job import (
    JOB_COMPLETED,
    JOB_COMPLETED_WITH_ERRORS,
    JOB_FAILED,
)
from services.batch_upsert_service import BatchUpsertService
from services.health_service import HealthService
from services.observability_service import ApiCallCollector, ObservabilityService
from services.sync_window_planner import SyncWindow, SyncWindowPlanner
from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


class SyncState(str, Enum):
    STARTED = "started"
    TOKEN_VALIDATED = "token_validated"
    ACCOUNTS_SYNCED = "accounts_synced"
    TRANSACTIONS_SYNCED = "transactions_synced"
    SEALED = "sealed"


@dataclass
class SyncOptions:
    """Caller-controlled knobs for one sync attempt."""

    sync_accounts: bool = True
    sync_transactions: bool = True
    transaction_limit: int = 500  # per-request page size hint, never a total cap
    transaction_days_back: int = 90
    transaction_start_date: Optional[datetime] = None
    transaction_end_date: Optional[datetime] = None
    force_sync: bool = False
    modified_since: Optional[datetime] = None


@dataclass
class SyncSummary:
    accounts_synced: int = 0
    accounts_created: int = 0
    accounts_updated: int = 0
    accounts_closed: int = 0
    transactions_synced: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    records_fetched: int = 0
    records_failed: int = 0
    sync_duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def records_written(self) -> int:
        return self.accounts_synced + self.transactions_synced

    def to_dict(self) -> dict:
        """JSON-safe representation for storage on the job and connection."""
        data = asdict(self)
        for key in ("started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class SyncResult:
    """Outcome of :meth:`SyncService.perform_sync`.

    ``error`` is set when the attempt was aborted at connection level
    (token, connectivity) or by an unexpected exception.
    """

    success: bool
    job_id: str
    status: str
    summary: SyncSummary
    message: str = ""
    error: Optional[Exception] = None


@dataclass
class SyncTrace:
    """Provider calls and errors of one attempt, persisted when the job is sealed."""

    calls: ApiCallCollector = field(default_factory=ApiCallCollector)
    errors: list[tuple[BaseException, dict]] = field(default_factory=list)

    def add_error(self, error: BaseException, **context) -> None:
        self.errors.append((error, context))


def decide_job_status(summary: SyncSummary) -> str:
    """Final job status from accumulated errors and records written."""
    if not summary.errors:
        return JOB_COMPLETED
    if summary.records_written > 0:
        return JOB_COMPLETED_WITH_ERRORS
    return JOB_FAILED


def _truncate(message: str) -> str:
    return message[:MAX_ERROR_LENGTH]


class SyncService:
    """Service for syncing accounts and transactions from a provider connection."""

    # Per-connection locks shared across all instances. Different connections
    # sync independently; a second sync of the same connection is refused.
    _locks: dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(
        self,
        provider_registry: Optional[ProviderRegistry] = None,
        token_manager: Optional[TokenManager] = None,
        planner: Optional[SyncWindowPlanner] = None,
        upsert_service: Optional[BatchUpsertService] = None,
        health_service: Optional[HealthService] = None,
        observability_service: Optional[ObservabilityService] = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            provider_registry: Registry of providers. If None, the default
                              registry is created on first use.
            token_manager: Token lifecycle manager.
            planner: Per-account window planner.
            upsert_service: Batch writer for accounts and transactions.
            health_service: Connection health tracker.
            observability_service: API call and error log writer.
        """
        self._registry = provider_registry
        self.token_manager = token_manager or TokenManager()
        self.planner = planner or SyncWindowPlanner()
        self.upsert_service = upsert_service or BatchUpsertService()
        self.health_service = health_service or HealthService()
        self.observability_service = observability_service or ObservabilityService()

    @property
    def registry(self) -> ProviderRegistry:
        """Get the provider registry, creating default if not provided."""
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    @classmethod
    def _connection_lock(cls, connection_id: str) -> threading.Lock:
        with cls._locks_guard:
            lock = cls._locks.get(connection_id)
            if lock is None:
                lock = threading.Lock()
                cls._locks[connection_id] = lock
            return lock

    @classmethod
    def is_sync_in_progress(cls, connection_id: str) -> bool:
        """Check if a sync is currently running for a connection."""
        lock = cls._connection_lock(connection_id)
        acquired = lock.acquire(blocking=False)
        if acquired:
            lock.release()
            return False
        return True

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def perform_sync(
        self,
        db: Session,
        connection_id: str,
        tenant_id: str,
        options: Optional[SyncOptions] = None,
        provider_id: Optional[str] = None,
    ) -> SyncResult:
        """Run one sync attempt for a connection and seal its ingestion job.

        Commits its own work: the job is committed as ``running`` before any
        provider call, and everything else is committed when the job is sealed.

        Args:
            db: Database session
            connection_id: Connection to sync
            tenant_id: Tenant that owns the connection
            options: Sync options (defaults to a full sync)
            provider_id: If given, the connection must belong to this provider

        Returns:
            SyncResult describing the sealed job

        Raises:
            SyncInProgressError: If this connection is already syncing
            ConnectionNotFoundError: If no matching connection exists
            ValueError: If the connection's provider is unknown or not configured
        """
        options = options or SyncOptions()
        lock = self._connection_lock(connection_id)
        if not lock.acquire(blocking=False):
            logger.warning("Sync blocked: connection %s is already syncing", connection_id)
            raise SyncInProgressError(connection_id)

        logger.info("Sync lock acquired for connection %s", connection_id)
        try:
            connection = self._load_connection(db, connection_id, tenant_id, provider_id)
            provider = self.registry.get_provider(connection.provider_id)

            job = IngestionJob(
                tenant_id=tenant_id,
                connection_id=connection.id,
                job_type=f"{connection.provider_id}_sync",
            )
            job.start()
            db.add(job)
            db.commit()
            logger.info("Sync started: connection %s, job %s", connection.id, job.id)

            trace = SyncTrace()
            try:
                return self._run(db, connection, provider, job, options, trace)
            except Exception as e:
                # Safety net: the job must never be left running
                logger.error(
                    "Sync failed unexpectedly for connection %s: %s",
                    connection_id, e, exc_info=True,
                )
                db.rollback()
                summary = SyncSummary(
                    started_at=job.started_at,
                    errors=["Unexpected error during sync"],
                )
                trace.add_error(e, stage="sync")
                self._seal(db, connection, job, summary, JOB_FAILED, time.monotonic(), trace)
                db.commit()
                return SyncResult(
                    success=False,
                    job_id=job.id,
                    status=JOB_FAILED,
                    summary=summary,
                    message="Sync failed",
                    error=e,
                )
        finally:
            lock.release()
            logger.info("Sync lock released for connection %s", connection_id)

    @staticmethod
    def _load_connection(
        db: Session, connection_id: str, tenant_id: str, provider_id: Optional[str]
    ) -> Connection:
        query = db.query(Connection).filter_by(id=connection_id, tenant_id=tenant_id)
        if provider_id:
            query = query.filter_by(provider_id=provider_id)
        connection = query.first()
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return connection

    def _run(
        self,
        db: Session,
        connection: Connection,
        provider: BankingProvider,
        job: IngestionJob,
        options: SyncOptions,
        trace: SyncTrace,
    ) -> SyncResult:
        started = time.monotonic()
        summary = SyncSummary(started_at=datetime.now(timezone.utc))
        state = SyncState.STARTED

        token_result = self.token_manager.get_valid_access_token(
            db, connection.id, connection.provider_id, provider.refresh_access_token
        )
        if not token_result.ok:
            error = token_result.error
            summary.errors.append(_truncate(f"Token: {provider.get_error_message(error)}"))
            trace.add_error(error, stage="token")
            logger.warning("Sync aborted for connection %s: %s", connection.id, error)
            self._seal(db, connection, job, summary, JOB_FAILED, started, trace)
            db.commit()
            return SyncResult(
                success=False,
                job_id=job.id,
                status=JOB_FAILED,
                summary=summary,
                message="Sync failed: connection requires attention",
                error=error,
            )

        token = token_result.token
        state = SyncState.TOKEN_VALIDATED
        credentials = ProviderCredentials(
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            access_token=token.access_token,
            metadata=dict(token.provider_metadata or {}),
            on_api_call=trace.calls,
        )

        abort_error: Optional[ProviderError] = None
        if options.sync_accounts:
            abort_error = self._sync_accounts(
                db, connection, provider, credentials, summary, trace
            )
        state = SyncState.ACCOUNTS_SYNCED

        if options.sync_transactions and abort_error is None:
            abort_error = self._sync_transactions(
                db, connection, provider, credentials, job, options, summary, trace
            )
        state = SyncState.TRANSACTIONS_SYNCED

        status = decide_job_status(summary)
        self._seal(db, connection, job, summary, status, started, trace)
        self._save_rate_limit(connection, provider)
        self.token_manager.mark_used(token)
        db.commit()
        state = SyncState.SEALED

        logger.info(
            "Sync %s for connection %s (state %s): %d accounts, %d transactions, "
            "%d errors, %d warnings, %dms",
            status, connection.id, state.value, summary.accounts_synced,
            summary.transactions_synced, len(summary.errors), len(summary.warnings),
            summary.sync_duration_ms,
        )
        return SyncResult(
            success=status != JOB_FAILED,
            job_id=job.id,
            status=status,
            summary=summary,
            message=self._message(status, summary),
            error=abort_error,
        )

    @staticmethod
    def _message(status: str, summary: SyncSummary) -> str:
        if status == JOB_COMPLETED:
            return "Sync completed successfully"
        if status == JOB_COMPLETED_WITH_ERRORS:
            return f"Sync completed with {len(summary.errors)} error(s)"
        return "Sync failed"

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _sync_accounts(
        self,
        db: Session,
        connection: Connection,
        provider: BankingProvider,
        credentials: ProviderCredentials,
        summary: SyncSummary,
        trace: SyncTrace,
    ) -> Optional[ProviderError]:
        """Fetch and upsert accounts.

        Returns:
            The error if it should abort the rest of the attempt, else None
        """
        try:
            provider_accounts = provider.fetch_accounts(credentials)
        except ProviderError as e:
            summary.errors.append(_truncate(f"Accounts: {provider.get_error_message(e)}"))
            trace.add_error(e, stage="accounts")
            logger.warning("Account fetch failed for connection %s: %s", connection.id, e)
            if e.disposition == ErrorDisposition.FATAL:
                return None
            return e

        summary.records_fetched += len(provider_accounts)
        result = self.upsert_service.upsert_accounts(db, connection, provider_accounts)
        summary.accounts_created += result.created
        summary.accounts_updated += result.updated
        summary.accounts_synced += result.total
        summary.records_failed += len(result.failed)
        summary.errors.extend(_truncate(str(f)) for f in result.failed)

        closed = self.upsert_service.close_missing_accounts(
            db, connection, [pa.external_account_id for pa in provider_accounts]
        )
        if closed:
            summary.accounts_closed = closed
            summary.warnings.append(f"{closed} accounts marked as closed")

        if hasattr(provider, "fetch_balances"):
            try:
                balances = provider.fetch_balances(credentials)
                self.upsert_service.apply_balances(db, connection, balances)
            except ProviderError as e:
                # Balances are supplementary; accounts are already stored
                summary.warnings.append(_truncate(f"Balances: {provider.get_error_message(e)}"))
                logger.warning("Balance fetch failed for connection %s: %s", connection.id, e)
        return None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _sync_transactions(
        self,
        db: Session,
        connection: Connection,
        provider: BankingProvider,
        credentials: ProviderCredentials,
        job: IngestionJob,
        options: SyncOptions,
        summary: SyncSummary,
        trace: SyncTrace,
    ) -> Optional[ProviderError]:
        """Fetch transactions per account concurrently and upsert them.

        Provider calls run in a bounded worker pool; every database write
        happens on the calling thread. An error requiring reconnection cancels
        fetches that have not started; fetches already running are still
        stored.

        Returns:
            The error if it should abort the rest of the attempt, else None
        """
        accounts = (
            db.query(Account)
            .filter(
                Account.connection_id == connection.id,
                Account.provider_id == connection.provider_id,
                Account.sync_enabled.is_(True),
                Account.status != "closed",
            )
            .all()
        )

        planned: dict[str, tuple[Account, SyncWindow]] = {}
        for account in accounts:
            window = self.planner.plan(
                account.last_synced_at,
                start_date=options.transaction_start_date,
                end_date=options.transaction_end_date,
                days_back=options.transaction_days_back,
                force=options.force_sync,
            )
            if window.skip:
                summary.warnings.append(f"{account.name}: Skipped ({window.reason})")
                continue
            planned[account.external_account_id] = (account, window)

        if not planned:
            return None

        def fetch(external_id: str, window: SyncWindow) -> list[ProviderTransaction]:
            return provider.fetch_transactions(
                credentials,
                external_id,
                FetchOptions(
                    start_date=window.start_date,
                    end_date=window.end_date,
                    page_size=options.transaction_limit,
                    modified_since=options.modified_since,
                ),
            )

        abort_error: Optional[ProviderError] = None
        workers = max(1, min(settings.SYNC_MAX_CONCURRENT_ACCOUNTS, len(planned)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync-fetch") as pool:
            futures = {
                pool.submit(fetch, external_id, window): external_id
                for external_id, (_, window) in planned.items()
            }
            handled = set()
            for future in as_completed(futures):
                handled.add(future)
                account, window = planned[futures[future]]
                error = self._collect(
                    db, connection, provider, account, window, future, job, summary, trace
                )
                if error is not None and error.disposition == ErrorDisposition.REQUIRES_RECONNECT:
                    abort_error = error
                    break

            if abort_error is not None:
                for future in futures:
                    future.cancel()
                for future, external_id in futures.items():
                    if future in handled or future.cancelled():
                        continue
                    account, window = planned[external_id]
                    self._collect(
                        db, connection, provider, account, window, future, job, summary, trace
                    )
                logger.warning(
                    "Transaction sync aborted for connection %s: %s", connection.id, abort_error
                )

        return abort_error

    def _collect(
        self,
        db: Session,
        connection: Connection,
        provider: BankingProvider,
        account: Account,
        window: SyncWindow,
        future,
        job: IngestionJob,
        summary: SyncSummary,
        trace: SyncTrace,
    ) -> Optional[ProviderError]:
        """Store one account's fetch result, or record its failure and return the error."""
        try:
            transactions = future.result()
        except ProviderError as e:
            message = _truncate(f"{account.name}: {provider.get_error_message(e)}")
            summary.errors.append(message)
            trace.add_error(e, stage="transactions", account_id=account.id)
            self._mark_account_result(db, account, "failed", message)
            logger.warning("Transaction fetch failed for account %s: %s", account.name, e)
            return e

        self._store_transactions(db, connection, account, window, transactions, job, summary)
        return None

    def _store_transactions(
        self,
        db: Session,
        connection: Connection,
        account: Account,
        window: SyncWindow,
        transactions: list[ProviderTransaction],
        job: IngestionJob,
        summary: SyncSummary,
    ) -> None:
        summary.records_fetched += len(transactions)
        result = self.upsert_service.upsert_transactions(
            db, connection, account, transactions, import_job_id=job.id
        )
        summary.transactions_created += result.created
        summary.transactions_updated += result.updated
        summary.transactions_synced += result.total
        summary.records_failed += len(result.failed)
        summary.errors.extend(_truncate(str(f)) for f in result.failed)

        # The window end advances even when some records failed
        account.last_synced_at = window.end_date
        if result.failed:
            error = _truncate("; ".join(str(f) for f in result.failed))
            self._mark_account_result(db, account, "partial", error, window.end_date)
        else:
            self._mark_account_result(db, account, "success", None, window.end_date)

    @staticmethod
    def _mark_account_result(
        db: Session,
        account: Account,
        status: str,
        error: Optional[str],
        synced_at: Optional[datetime] = None,
    ) -> None:
        account.last_sync_status = status
        account.last_sync_error = error
        raw = (
            db.query(RawProviderAccount)
            .filter_by(
                connection_id=account.connection_id,
                provider_id=account.provider_id,
                external_account_id=account.external_account_id,
            )
            .first()
        )
        if raw is not None:
            raw.last_sync_status = status
            raw.last_sync_error = error
            if synced_at is not None:
                raw.last_synced_at = synced_at
        db.flush()

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _seal(
        self,
        db: Session,
        connection: Connection,
        job: IngestionJob,
        summary: SyncSummary,
        status: str,
        started: float,
        trace: SyncTrace,
    ) -> None:
        """Seal the job, report to the health tracker and stamp the connection.

        Also writes the attempt's API call and error logs. A clean sync
        resolves the connection's earlier errors.
        """
        now = datetime.now(timezone.utc)
        summary.completed_at = now
        summary.sync_duration_ms = int((time.monotonic() - started) * 1000)

        job.seal(
            status,
            summary=summary.to_dict(),
            records_fetched=summary.records_fetched,
            records_imported=summary.records_written,
            records_failed=summary.records_failed,
            error_message="; ".join(summary.errors)[:1000] if summary.errors else None,
        )
        db.flush()

        self.observability_service.record_api_calls(db, connection, trace.calls.drain(), job.id)
        if status == JOB_COMPLETED:
            self.observability_service.resolve_errors(db, connection.id)
        for error, context in trace.errors:
            self.observability_service.log_error(
                db, connection, error, job_id=job.id, context=context
            )

        if status == JOB_COMPLETED:
            self.health_service.record_sync_success(db, connection)
        elif status == JOB_FAILED:
            self.health_service.record_sync_failure(
                db, connection, summary.errors[0] if summary.errors else "Sync failed"
            )
        else:
            connection.health_score = self.health_service.calculate_health_score(
                db, connection.id
            )

        connection.last_sync_at = now
        connection.next_sync_at = now + self.planner.min_interval
        connection.last_sync_summary = summary.to_dict()
        db.flush()

    @staticmethod
    def _save_rate_limit(connection: Connection, provider: BankingProvider) -> None:
        if not hasattr(provider, "get_rate_limit_status"):
            return
        rate_limit = provider.get_rate_limit_status(connection.id)
        if rate_limit:
            connection.provider_metadata = {
                **(connection.provider_metadata or {}),
                "rate_limit": rate_limit,
            }
