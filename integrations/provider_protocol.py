"""Provider protocol definitions for multi-provider bank sync.

This module defines the common interface every banking provider adapter
(Xero, Tink, ...) implements, and the dataclasses that cross the adapter
boundary. Provider JSON never leaves an adapter except inside the opaque
``metadata`` dict of these types.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol


@dataclass
class ProviderToken:
    """OAuth token set returned by a provider's token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scopes: list[str] = field(default_factory=list)


@dataclass
class ProviderCredentials:
    """Everything an adapter needs to call the provider for one connection."""

    connection_id: str
    tenant_id: str
    access_token: str
    metadata: dict = field(default_factory=dict)  # e.g. {"xero_tenant_id": ...}
    # Receives an integrations.http_client.ApiCall for every provider request
    on_api_call: Callable[[Any], None] | None = field(default=None, repr=False)


@dataclass
class ProviderAccount:
    """Account as reported by a provider, already filtered and mapped."""

    external_account_id: str
    account_name: str
    account_type: str  # checking | savings | credit_card | loan | investment | other
    currency: str
    balance: Decimal | None = None
    account_number: str | None = None
    institution: str | None = None
    status: str = "active"
    metadata: dict = field(default_factory=dict)


@dataclass
class ProviderTransaction:
    """Transaction as reported by a provider.

    ``amount`` is always the absolute value; ``type`` carries the direction.
    """

    external_transaction_id: str
    external_account_id: str
    amount: Decimal
    type: str  # "credit" | "debit"
    date: datetime
    description: str = ""
    currency: str | None = None
    counterparty_name: str | None = None
    reference: str | None = None
    category: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class FetchOptions:
    """Window and paging hints for a transaction fetch.

    ``page_size`` only sizes each request; adapters always return every
    transaction in the window.
    """

    start_date: datetime | None = None
    end_date: datetime | None = None
    page_size: int | None = None
    modified_since: datetime | None = None


class BankingProvider(Protocol):
    """Protocol that all banking provider adapters must implement."""

    @property
    def provider_id(self) -> str:
        """Stable lowercase id stored on connections and tokens (e.g. ``"xero"``)."""
        ...

    def is_configured(self) -> bool:
        """Return True if client credentials are present."""
        ...

    def missing_settings(self) -> list[str]:
        """Names of required settings that are empty."""
        ...

    def get_authorization_url(self, state: str) -> str:
        ...

    def exchange_code_for_token(self, code: str) -> ProviderToken:
        ...

    def refresh_access_token(self, refresh_token: str) -> ProviderToken:
        ...

    def fetch_user_info(self, token: ProviderToken) -> dict:
        """Fetch provider identity metadata to store alongside the token."""
        ...

    def fetch_accounts(self, credentials: ProviderCredentials) -> list[ProviderAccount]:
        """Fetch transactable, active accounts.

        Raises:
            ProviderError: On any provider failure.
        """
        ...

    def fetch_transactions(
        self,
        credentials: ProviderCredentials,
        account_id: str,
        options: FetchOptions,
    ) -> list[ProviderTransaction]:
        """Fetch every transaction in the window, following all pages.

        Raises:
            ProviderError: On any provider failure.
        """
        ...

    def is_token_expired(self, expires_at: datetime | None) -> bool:
        ...

    def get_error_message(self, error: BaseException) -> str:
        ...
