"""Normalization and idempotent batch writes for accounts and transactions.

Provider records are mapped to the canonical shape, then written in
batches of ``DB_BATCH_SIZE`` as upserts on the natural key
(connection_id, provider_id, external id). A batch runs inside one
savepoint; if it fails, each record is retried in its own savepoint so a
single bad record fails alone.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.orm import Session

from integrations.exceptions import PartialRecordError
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import ProviderAccount, ProviderTransaction
from models import Account, Connection, RawProviderAccount, Transaction
from models.utils import generate_uuid

logger = logging.getLogger(__name__)

DB_BATCH_SIZE = 100

T = TypeVar("T")


@dataclass
class RecordFailure:
    """A record that could not be normalized or written."""

    external_id: str
    label: str
    error: str

    def __str__(self) -> str:
        return f"{self.label}: {self.error}"


@dataclass
class BatchResult:
    """Counts and failures from an upsert run."""

    created: int = 0
    updated: int = 0
    failed: list[RecordFailure] = field(default_factory=list)
    records: list = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated

    def merge(self, other: "BatchResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.failed.extend(other.failed)
        self.records.extend(other.records)


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def build_transaction_id(provider_id: str, connection_id: str, external_id: str) -> str:
    """Platform-wide transaction id: ``{provider}_{connection}_{external}``."""
    return f"{provider_id}_{connection_id}_{external_id}"


def signed_amount(amount: Decimal, txn_type: str) -> Decimal:
    """Apply the canonical sign convention: credits positive, debits negative."""
    magnitude = abs(amount)
    return magnitude if txn_type == "credit" else -magnitude


def normalize_account(pa: ProviderAccount, *, connection: Connection) -> dict:
    """Map a provider account to canonical Account column values.

    Raises:
        PartialRecordError: If the record has no external id.
    """
    if not pa.external_account_id:
        raise PartialRecordError("Account has no external id", connection.provider_id)
    return {
        "name": pa.account_name,
        "account_type": pa.account_type or "other",
        "currency": (pa.currency or "USD").upper(),
        "balance": pa.balance,
        "provider_metadata": {
            **(pa.metadata or {}),
            "account_number": pa.account_number,
            "institution": pa.institution,
        },
    }


def normalize_transaction(
    txn: ProviderTransaction,
    *,
    provider_id: str,
    connection: Connection,
    account: Account,
) -> dict:
    """Map a provider transaction to canonical Transaction column values.

    Raises:
        PartialRecordError: If the record cannot be normalized.
    """
    if not txn.external_transaction_id:
        raise PartialRecordError("Transaction has no external id", provider_id)
    if txn.type not in ("credit", "debit"):
        raise PartialRecordError(
            f"Unknown transaction type {txn.type!r}",
            provider_id,
            record_id=txn.external_transaction_id,
        )
    if txn.amount is None or txn.date is None:
        raise PartialRecordError(
            "Transaction is missing amount or date",
            provider_id,
            record_id=txn.external_transaction_id,
        )

    return {
        "transaction_id": build_transaction_id(
            provider_id, connection.id, txn.external_transaction_id
        ),
        "tenant_id": connection.tenant_id,
        "connection_id": connection.id,
        "provider_id": provider_id,
        "account_id": account.id,
        "external_transaction_id": txn.external_transaction_id,
        "amount": signed_amount(Decimal(txn.amount), txn.type),
        "currency": (txn.currency or account.currency or "USD").upper(),
        "description": txn.description,
        "transaction_type": txn.type,
        "transaction_date": ensure_utc(txn.date),
        "counterparty_name": txn.counterparty_name,
        "reference": txn.reference,
        "category": txn.category,
        "provider_metadata": {"provider_id": provider_id, **(txn.metadata or {})},
    }


class BatchUpsertService:
    """Service for batched, idempotent account and transaction writes."""

    def __init__(self, batch_size: int = DB_BATCH_SIZE):
        self.batch_size = batch_size

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def upsert_accounts(
        self,
        db: Session,
        connection: Connection,
        provider_accounts: list[ProviderAccount],
    ) -> BatchResult:
        """Create or update canonical accounts and their raw provider records.

        Args:
            db: Database session
            connection: Connection the accounts belong to
            provider_accounts: Accounts returned by the adapter

        Returns:
            BatchResult whose ``records`` are the upserted Account rows
        """
        result = BatchResult()
        for batch in chunked(provider_accounts, self.batch_size):
            result.merge(self._run_batch(
                db, batch,
                lambda b: self._write_accounts(db, connection, b),
                key=lambda pa: pa.external_account_id,
                label=lambda pa: pa.account_name or pa.external_account_id,
            ))

        logger.info(
            "Connection %s: accounts upserted (%d new, %d existing, %d failed)",
            connection.id, result.created, result.updated, len(result.failed),
        )
        return result

    def _write_accounts(
        self, db: Session, connection: Connection, batch: list[ProviderAccount]
    ) -> BatchResult:
        provider_id = connection.provider_id
        ids = [pa.external_account_id for pa in batch]
        existing = {
            a.external_account_id: a
            for a in db.query(Account).filter(
                Account.connection_id == connection.id,
                Account.provider_id == provider_id,
                Account.external_account_id.in_(ids),
            )
        }
        raw_existing = {
            r.external_account_id: r
            for r in db.query(RawProviderAccount).filter(
                RawProviderAccount.connection_id == connection.id,
                RawProviderAccount.provider_id == provider_id,
                RawProviderAccount.external_account_id.in_(ids),
            )
        }

        out = BatchResult()
        now = datetime.now(timezone.utc)
        for pa in batch:
            values = normalize_account(pa, connection=connection)

            account = existing.get(pa.external_account_id)
            if account is None:
                account = Account(
                    id=generate_uuid(),
                    tenant_id=connection.tenant_id,
                    connection_id=connection.id,
                    provider_id=provider_id,
                    external_account_id=pa.external_account_id,
                    sync_enabled=True,
                )
                db.add(account)
                existing[pa.external_account_id] = account
                out.created += 1
            else:
                out.updated += 1

            balance = values.pop("balance")
            for column, value in values.items():
                setattr(account, column, value)
            account.status = "active"
            if balance is not None:
                account.balance = balance
                account.balance_date = now
            account.updated_at = now

            raw = raw_existing.get(pa.external_account_id)
            if raw is None:
                raw = RawProviderAccount(
                    connection_id=connection.id,
                    provider_id=provider_id,
                    external_account_id=pa.external_account_id,
                )
                db.add(raw)
                raw_existing[pa.external_account_id] = raw
            raw.account_name = pa.account_name
            raw.account_id = account.id
            raw.raw_data = {
                "account_type": pa.account_type,
                "currency": pa.currency,
                "balance": str(pa.balance) if pa.balance is not None else None,
                "status": pa.status,
                "metadata": pa.metadata or {},
            }
            out.records.append(account)

        db.flush()
        return out

    def close_missing_accounts(
        self,
        db: Session,
        connection: Connection,
        active_external_ids: list[str],
    ) -> int:
        """Mark accounts absent from the latest listing as closed.

        An empty listing closes nothing: a provider glitch that returns no
        accounts must not close every account on the connection.

        Returns:
            Number of accounts newly marked closed
        """
        if not active_external_ids:
            logger.warning(
                "Connection %s: provider returned no accounts, skipping closure check",
                connection.id,
            )
            return 0

        to_close = (
            db.query(Account)
            .filter(
                Account.connection_id == connection.id,
                Account.provider_id == connection.provider_id,
                Account.status != "closed",
                Account.external_account_id.notin_(active_external_ids),
            )
            .all()
        )
        for account in to_close:
            account.status = "closed"
            logger.info("Account %s (%s) marked closed", account.name, account.external_account_id)
        db.flush()
        return len(to_close)

    @staticmethod
    def apply_balances(
        db: Session, connection: Connection, balances: dict[str, Decimal]
    ) -> int:
        """Set balances reported separately from the account listing."""
        if not balances:
            return 0
        now = datetime.now(timezone.utc)
        accounts = (
            db.query(Account)
            .filter(
                Account.connection_id == connection.id,
                Account.provider_id == connection.provider_id,
                Account.external_account_id.in_(list(balances.keys())),
            )
            .all()
        )
        for account in accounts:
            account.balance = balances[account.external_account_id]
            account.balance_date = now
        db.flush()
        return len(accounts)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def upsert_transactions(
        self,
        db: Session,
        connection: Connection,
        account: Account,
        provider_transactions: list[ProviderTransaction],
        import_job_id: str | None = None,
    ) -> BatchResult:
        """Normalize and upsert one account's transactions.

        Records that fail normalization are reported in ``failed`` and
        skipped; duplicates within the payload collapse to the last copy.
        """
        result = BatchResult()
        normalized: dict[str, dict] = {}
        for txn in provider_transactions:
            try:
                row = normalize_transaction(
                    txn, provider_id=connection.provider_id, connection=connection, account=account
                )
            except PartialRecordError as e:
                result.failed.append(RecordFailure(
                    external_id=txn.external_transaction_id or "",
                    label=f"{account.name} transaction {txn.external_transaction_id or '<no id>'}",
                    error=str(e),
                ))
                continue
            row["import_job_id"] = import_job_id
            normalized[row["external_transaction_id"]] = row

        rows = list(normalized.values())
        for batch in chunked(rows, self.batch_size):
            result.merge(self._run_batch(
                db, batch,
                lambda b: self._write_transactions(db, connection, b),
                key=lambda r: r["external_transaction_id"],
                label=lambda r: f"{account.name} transaction {r['external_transaction_id']}",
            ))

        logger.info(
            "Account %s: transactions upserted (%d new, %d updated, %d failed)",
            account.name, result.created, result.updated, len(result.failed),
        )
        return result

    def _write_transactions(
        self, db: Session, connection: Connection, batch: list[dict]
    ) -> BatchResult:
        ids = [r["external_transaction_id"] for r in batch]
        existing = {
            t.external_transaction_id: t
            for t in db.query(Transaction).filter(
                Transaction.connection_id == connection.id,
                Transaction.provider_id == connection.provider_id,
                Transaction.external_transaction_id.in_(ids),
            )
        }

        out = BatchResult()
        now = datetime.now(timezone.utc)
        for row in batch:
            txn = existing.get(row["external_transaction_id"])
            if txn is None:
                txn = Transaction(**row)
                db.add(txn)
                out.created += 1
            else:
                for column, value in row.items():
                    setattr(txn, column, value)
                out.updated += 1
            txn.updated_at = now
            out.records.append(txn)

        db.flush()
        return out

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    def _run_batch(self, db: Session, batch: list, write, *, key, label) -> BatchResult:
        """Write a batch in one savepoint, falling back to one savepoint per record."""
        try:
            with db.begin_nested():
                return write(batch)
        except Exception as e:
            logger.warning(
                "Batch of %d records failed (%s), retrying records individually",
                len(batch), e,
            )

        result = BatchResult()
        for item in batch:
            try:
                with db.begin_nested():
                    result.merge(write([item]))
            except Exception as e:
                logger.warning("Record %s failed: %s", key(item), e)
                result.failed.append(
                    RecordFailure(external_id=key(item) or "", label=label(item), error=str(e))
                )
        return result
