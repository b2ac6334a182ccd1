"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load provider secrets from the system keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    Everything else falls through to the environment and ``.env`` sources.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        return get_credential(env_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./bank_sync.db"

    # Where OAuth callbacks send the browser once a connection is authorized
    APP_BASE_URL: str = "http://localhost:3000"

    # Xero (OAuth 2.0 accounting provider)
    XERO_CLIENT_ID: str = ""
    XERO_CLIENT_SECRET: str = ""
    XERO_REDIRECT_URI: str = ""
    XERO_WEBHOOK_KEY: str = ""

    # Tink (open-banking aggregator)
    TINK_CLIENT_ID: str = ""
    TINK_CLIENT_SECRET: str = ""
    TINK_REDIRECT_URI: str = ""
    TINK_MARKET: str = "GB"

    # Sync planning
    SYNC_DEFAULT_DAYS_BACK: int = 90
    SYNC_OVERLAP_HOURS: int = 24
    SYNC_MIN_INTERVAL_MINUTES: int = 60
    SYNC_MAX_CONCURRENT_ACCOUNTS: int = 3
    SYNC_TRANSACTION_LIMIT: int = 500

    # Outbound HTTP retry policy
    HTTP_MAX_RETRIES: int = 3
    HTTP_BASE_DELAY_SECONDS: float = 1.0
    HTTP_MAX_DELAY_SECONDS: float = 60.0
    HTTP_DEFAULT_RETRY_AFTER_SECONDS: float = 60.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    @field_validator("APP_BASE_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Drop a trailing ``/`` so redirect paths can be appended directly."""
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
