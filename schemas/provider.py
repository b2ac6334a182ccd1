"""Pydantic schemas for provider configuration and status."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ProviderStatusResponse(BaseModel):
    """Response schema for a single provider's status."""

    provider: str
    configured: bool
    connection_count: int
    active_connections: int
    error_connections: int
    last_sync_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProviderConfigStatus(BaseModel):
    provider: str
    configured: bool
    missing: list[str] = []


class ConfigCheckResponse(BaseModel):
    """Result of the startup/on-demand configuration check."""

    ok: bool
    providers: list[ProviderConfigStatus]
