"""External API integrations.

This package contains:
- Provider protocol: Common interface for banking/accounting providers
- Provider registry: Manages the registered adapters
- Xero client: Accounting API (bank accounts and bank transactions)
- Tink client: Open-banking aggregator (Data API v2)
- Rate-limited HTTP client and pagination helpers shared by the adapters
"""

from integrations.provider_protocol import (
    BankingProvider,
    ProviderAccount,
    ProviderTransaction,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry

__all__ = [
    "BankingProvider",
    "ProviderAccount",
    "ProviderTransaction",
    "ProviderRegistry",
    "get_provider_registry",
]
