"""Provider status and configuration-check endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from schemas.provider import ConfigCheckResponse, ProviderStatusResponse
from services.provider_service import ProviderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["providers"])


def get_registry() -> ProviderRegistry:
    """Get the provider registry (dependency for injection in tests)."""
    return get_provider_registry()


@router.get("", response_model=list[ProviderStatusResponse])
def list_providers(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
):
    """List all known providers with configuration and connection counts."""
    return ProviderService.list_providers(db, registry=registry)


@router.get("/config-check", response_model=ConfigCheckResponse)
def config_check(registry: ProviderRegistry = Depends(get_registry)):
    """Report which provider settings are missing.

    Always 200: an incomplete configuration fails the check, not the request.
    """
    return ProviderService.check_configuration(registry)
