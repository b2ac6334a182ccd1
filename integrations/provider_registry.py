"""Provider registry for banking provider adapters.

The registry is responsible for:
- Instantiating every known adapter
- Resolving an adapter by provider id for a sync attempt
- Reporting which providers are missing configuration
"""

import importlib
import logging

from integrations.provider_protocol import BankingProvider

logger = logging.getLogger(__name__)

# Each tuple is (provider_id, module_path, class_name).
PROVIDER_DEFINITIONS: list[tuple[str, str, str]] = [
    ("xero", "integrations.xero_client", "XeroClient"),
    ("tink", "integrations.tink_client", "TinkClient"),
]

ALL_PROVIDER_IDS: list[str] = [provider_id for provider_id, _, _ in PROVIDER_DEFINITIONS]


class ProviderRegistry:
    """Registry of banking provider adapters, keyed by provider id.

    Unlike a credential check at call time, adapters are registered even
    when unconfigured so the configuration check can report exactly which
    settings are missing. ``get_provider`` refuses unconfigured adapters.

    Example:
        registry = get_provider_registry()
        provider = registry.get_provider("xero")
        accounts = provider.fetch_accounts(credentials)
    """

    def __init__(self):
        self._providers: dict[str, BankingProvider] = {}

    def register_provider(self, provider: BankingProvider) -> None:
        self._providers[provider.provider_id] = provider

    def get_provider(self, provider_id: str) -> BankingProvider:
        """Get a configured provider by id.

        Raises:
            ValueError: If the provider is unknown or not configured.
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ValueError(f"Unknown provider '{provider_id}'")
        if not provider.is_configured():
            raise ValueError(f"Provider '{provider_id}' is not configured")
        return provider

    def is_known(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def list_providers(self) -> list[str]:
        """List registered provider ids, configured or not."""
        return list(self._providers.keys())

    def is_configured(self, provider_id: str) -> bool:
        provider = self._providers.get(provider_id)
        return provider is not None and provider.is_configured()

    def check_configuration(self) -> dict[str, list[str]]:
        """Map each registered provider id to its missing settings.

        An empty list means the provider is fully configured.
        """
        return {
            provider_id: provider.missing_settings()
            for provider_id, provider in self._providers.items()
        }

    def initialize_default_providers(self) -> None:
        """Instantiate and register every provider in PROVIDER_DEFINITIONS."""
        for provider_id, module_path, class_name in PROVIDER_DEFINITIONS:
            try:
                module = importlib.import_module(module_path)
                cls = getattr(module, class_name)
                self.register_provider(cls())
            except Exception:
                logger.warning(
                    "Provider failed to initialize: %s", provider_id, exc_info=True
                )
                continue

            if self._providers[provider_id].is_configured():
                logger.info("Provider registered: %s", provider_id)
            else:
                logger.debug("Provider registered without credentials: %s", provider_id)


def get_provider_registry() -> ProviderRegistry:
    """Create and return a registry with the default providers."""
    registry = ProviderRegistry()
    registry.initialize_default_providers()
    return registry
