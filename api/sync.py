"""Sync API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.helpers import error_response
from config import settings
from database import get_db
from integrations.exceptions import (
    ConnectionNotFoundError,
    ErrorDisposition,
    ProviderError,
    SyncInProgressError,
)
from integrations.provider_registry import ALL_PROVIDER_IDS
from schemas.sync import SyncRequest, SyncResponse, SyncSummaryResponse
from services.sync_service import SyncOptions, SyncResult, SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["sync"])

# Dependency injection for testing
_sync_service_override: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    """Get SyncService instance, allowing for test overrides."""
    if _sync_service_override is not None:
        return _sync_service_override
    return SyncService()


def set_sync_service_override(service: Optional[SyncService]) -> None:
    """Set a SyncService override for testing."""
    global _sync_service_override
    _sync_service_override = service


def _response(result: SyncResult) -> SyncResponse:
    summary = result.summary
    return SyncResponse(
        success=result.success,
        job_id=result.job_id,
        status=result.status,
        message=result.message,
        summary=SyncSummaryResponse(
            accounts_synced=summary.accounts_synced,
            accounts_created=summary.accounts_created,
            accounts_updated=summary.accounts_updated,
            transactions_synced=summary.transactions_synced,
            errors=summary.errors or None,
            warnings=summary.warnings or None,
            sync_duration_ms=summary.sync_duration_ms,
        ),
    )


@router.post("/{provider}/sync", response_model=SyncResponse, response_model_by_alias=True)
def trigger_sync(
    provider: str,
    body: SyncRequest,
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Run a sync for one connection of a provider.

    Returns 200 with the sealed job whenever the attempt ran to completion,
    including ``completed_with_errors`` and ``failed`` jobs caused by
    account or transaction errors.

    Error responses (``{"error": ...}``):
        - 400: Unknown or unconfigured provider
        - 404: Connection not found for this tenant and provider
        - 409: A sync for this connection is already in progress
        - 401: Provider authorization lost; the user must reconnect
        - 502: Provider unavailable or rejected the request
        - 500: Unexpected error
    """
    if provider not in ALL_PROVIDER_IDS:
        return error_response(400, f"Unknown provider: {provider}")

    # Early check to avoid loading anything if the connection is busy
    if sync_service.is_sync_in_progress(body.connection_id):
        return error_response(
            409, "Sync already in progress. Please wait for the current sync to complete."
        )

    options = SyncOptions(
        sync_accounts=body.sync_accounts,
        sync_transactions=body.sync_transactions,
        transaction_limit=min(body.transaction_limit, settings.SYNC_TRANSACTION_LIMIT),
        transaction_days_back=body.transaction_days_back,
        transaction_start_date=body.transaction_start_date,
        transaction_end_date=body.transaction_end_date,
        force_sync=body.force_sync,
    )

    try:
        result = sync_service.perform_sync(
            db, body.connection_id, body.tenant_id, options, provider_id=provider
        )
    except SyncInProgressError:
        return error_response(
            409, "Sync already in progress. Please wait for the current sync to complete."
        )
    except ConnectionNotFoundError:
        return error_response(404, "Connection not found")
    except ValueError as e:
        # Provider not configured
        logger.warning("Sync rejected for %s: %s", provider, e)
        return error_response(400, f"Provider {provider} is not available")
    except Exception:
        # Safety catch for unexpected errors; never expose str(e)
        logger.error("Unexpected error during sync", exc_info=True)
        return error_response(500, "An unexpected error occurred during sync.")

    if result.error is not None and not result.success:
        error = result.error
        if not isinstance(error, ProviderError):
            return error_response(500, "An unexpected error occurred during sync.")
        if error.disposition == ErrorDisposition.REQUIRES_RECONNECT:
            return error_response(
                401, f"Authorization for {provider} has expired. Please reconnect your account."
            )
        return error_response(
            502, "A provider error occurred during sync. Check the logs for details."
        )

    return _response(result)
