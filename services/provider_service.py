"""Provider service - configuration check and per-provider connection status."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.provider_registry import ALL_PROVIDER_IDS, ProviderRegistry
from models import Connection
from models.connection import ACTIVE, ERROR
from schemas.provider import ConfigCheckResponse, ProviderConfigStatus, ProviderStatusResponse

logger = logging.getLogger(__name__)


class ProviderService:
    """Service for provider configuration and status."""

    @staticmethod
    def check_configuration(registry: ProviderRegistry) -> ConfigCheckResponse:
        """Report missing settings per provider without raising.

        Args:
            registry: Provider registry holding every adapter, configured or not

        Returns:
            ConfigCheckResponse; ``ok`` is False if any provider is incomplete
        """
        missing_map = registry.check_configuration()
        providers = []
        for provider_id in ALL_PROVIDER_IDS:
            missing = missing_map.get(provider_id)
            if missing is None:
                # Adapter failed to initialize
                missing = ["<provider failed to initialize>"]
            providers.append(
                ProviderConfigStatus(
                    provider=provider_id, configured=not missing, missing=missing
                )
            )

        for status in providers:
            if not status.configured:
                logger.warning(
                    "Provider %s is missing settings: %s",
                    status.provider, ", ".join(status.missing),
                )
        return ConfigCheckResponse(
            ok=all(p.configured for p in providers), providers=providers
        )

    @staticmethod
    def list_providers(
        db: Session, registry: Optional[ProviderRegistry] = None
    ) -> list[ProviderStatusResponse]:
        """List all known providers with configuration and connection counts.

        Args:
            db: Database session
            registry: Optional provider registry to check credentials.
                      If None, ``configured`` will be False for all.
        """
        stats = (
            db.query(
                Connection.provider_id,
                Connection.status,
                func.count(Connection.id),
                func.max(Connection.last_sync_at),
            )
            .group_by(Connection.provider_id, Connection.status)
            .all()
        )
        counts: dict[str, dict[str, int]] = {}
        last_sync: dict[str, Optional[datetime]] = {}
        for provider_id, status, count, latest in stats:
            counts.setdefault(provider_id, {})[status] = count
            if latest is not None and (
                last_sync.get(provider_id) is None or latest > last_sync[provider_id]
            ):
                last_sync[provider_id] = latest

        result = []
        for provider_id in ALL_PROVIDER_IDS:
            by_status = counts.get(provider_id, {})
            result.append(
                ProviderStatusResponse(
                    provider=provider_id,
                    configured=registry.is_configured(provider_id) if registry else False,
                    connection_count=sum(by_status.values()),
                    active_connections=by_status.get(ACTIVE, 0),
                    error_connections=by_status.get(ERROR, 0),
                    last_sync_at=last_sync.get(provider_id),
                )
            )
        return result
