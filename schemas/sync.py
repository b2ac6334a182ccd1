"""Pydantic schemas for the sync trigger endpoint (camelCase on the wire)."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(CamelModel):
    """Request body for ``POST /connections/{provider}/sync``."""

    connection_id: str
    tenant_id: str
    sync_accounts: bool = True
    sync_transactions: bool = True
    transaction_limit: int = Field(default=500, ge=1, le=10000)
    transaction_days_back: int = Field(default=90, ge=1, le=3650)
    transaction_start_date: Optional[datetime] = None
    transaction_end_date: Optional[datetime] = None
    force_sync: bool = False

    @model_validator(mode="after")
    def check_date_range(self):
        if (
            self.transaction_start_date is not None
            and self.transaction_end_date is not None
            and self.transaction_start_date > self.transaction_end_date
        ):
            raise ValueError("transactionStartDate must not be after transactionEndDate")
        return self


class SyncSummaryResponse(CamelModel):
    accounts_synced: int = 0
    accounts_created: int = 0
    accounts_updated: int = 0
    transactions_synced: int = 0
    errors: Optional[list[str]] = None
    warnings: Optional[list[str]] = None
    sync_duration_ms: int = 0


class SyncResponse(CamelModel):
    """Response for a sealed sync attempt."""

    success: bool
    job_id: str
    status: str
    message: str
    summary: SyncSummaryResponse
